from .trigger_jenkins import __version__  # noqa:F401
from .trigger_jenkins import CONFIG  # noqa:F401
from .trigger_jenkins import Config, Credentials, Crumb  # noqa:F401
from .trigger_jenkins import QueueInfo, BuildInfo  # noqa:F401
from .trigger_jenkins import JenkinsError, ConfigurationError  # noqa:F401
from .trigger_jenkins import JenkinsAPIError  # noqa:F401
from .trigger_jenkins import BuildCancelled, BuildTimeout  # noqa:F401
from .trigger_jenkins import HTTPError, URLError  # noqa:F401
from .trigger_jenkins import log, errlog, debug  # noqa:F401
from .trigger_jenkins import parse_args, parse_kwarg, parse_bool  # noqa:F401
from .trigger_jenkins import job_path, init_ssl  # noqa:F401
from .trigger_jenkins import Session  # noqa:F401
from .trigger_jenkins import report_result, main, cli  # noqa:F401

#!/usr/bin/env python
"""
Trigger a parameterized Jenkins build, stream its log and wait for it to
finish.
"""
import argparse
import base64
import codecs
import json
import math
import os
import re
import ssl
import sys
import time
from collections import namedtuple

from urllib.request import Request, HTTPCookieProcessor, HTTPSHandler
from urllib.request import HTTPRedirectHandler, build_opener
from urllib.error import HTTPError, URLError  # noqa:F401
from urllib.parse import urlencode, quote
from http.cookiejar import CookieJar


CONFIG = {
    'quiet': False,
    'debug': False,
}
__version__ = '1.0.0'

DEFAULT_INTERVAL = 2.0
REDIRECT_CODES = (301, 302, 303, 307, 308)

Config = namedtuple(
    'Config',
    'host username token job params interval timeout wait_queue verify_ssl',
)
Credentials = namedtuple('Credentials', 'username token crumb')
Crumb = namedtuple('Crumb', 'field value')
QueueInfo = namedtuple('QueueInfo', 'number cancelled')
BuildInfo = namedtuple('BuildInfo', 'building result')


class JenkinsError(Exception):
    pass


class ConfigurationError(JenkinsError, ValueError):
    pass


class JenkinsAPIError(JenkinsError):
    """
    The server answered, but not with what the Jenkins API promises.
    """


class BuildCancelled(JenkinsError):
    pass


class BuildTimeout(JenkinsError):
    pass


def log(*args, **kwargs):
    if CONFIG['quiet']:
        return
    kwargs['file'] = sys.stderr
    print(*args, **kwargs)


def errlog(*args, **kwargs):
    kwargs['file'] = sys.stderr
    print(*args, **kwargs)


def debug(*args, **kwargs):
    if not CONFIG['debug']:
        return
    errlog('[debug]', *args, **kwargs)


def parse_kwarg(kwarg):
    """
    Parse a key=value argument from the command line and return it as a
    (key, value) tuple. Only the first '=' separates key and value.
    """
    if '=' not in kwarg:
        msg = 'Invalid job argument: "{}". Please use key=value format'
        raise ValueError(msg.format(kwarg))

    key, value = kwarg.split('=', 1)
    return key.strip(), value


def parse_bool(text):
    """
    Parse a boolean header value the way Jenkins may spell it.
    """
    if text in ('1', 't', 'T', 'TRUE', 'true', 'True'):
        return True
    if text in ('0', 'f', 'F', 'FALSE', 'false', 'False'):
        return False
    raise ValueError('Invalid boolean value: "{}"'.format(text))


def positive_float(text):
    value = float(text)
    if not math.isfinite(value) or value <= 0:
        raise argparse.ArgumentTypeError(
            'must be a positive number of seconds, got {}'.format(text)
        )
    return value


def parse_args(argv=None, environ=None):
    """
    Parse command line arguments and the JENKINS_* environment variables and
    return the resulting Config.

    Command line flags take precedence over the environment.
    """
    if environ is None:
        environ = os.environ

    parser = argparse.ArgumentParser(
        prog='Jenkins trigger',
        description='Trigger a parameterized Jenkins build, stream its log '
        'and wait for it to finish',
    )
    parser.add_argument(
        '-j',
        '-job',
        '--job',
        help='Name of the job to build. Use folder/name for jobs in folders',
        type=str,
        default='',
    )
    parser.add_argument(
        '-H',
        '--host',
        help='Base url of the Jenkins server (default: $JENKINS_HOST_URL)',
        type=str,
        default=environ.get('JENKINS_HOST_URL', ''),
    )
    parser.add_argument(
        '-u',
        '--user',
        help='Username (default: $JENKINS_USERNAME)',
        type=str,
        default=environ.get('JENKINS_USERNAME', ''),
    )
    parser.add_argument(
        '-t',
        '--token',
        help='User API token (default: $JENKINS_API_TOKEN)',
        type=str,
        default=environ.get('JENKINS_API_TOKEN', ''),
    )
    parser.add_argument(
        '-i',
        '--interval',
        help='Seconds to sleep between polls (default: %(default)s)',
        type=positive_float,
        default=DEFAULT_INTERVAL,
    )
    parser.add_argument(
        '--timeout',
        help='Give up if the build has not finished after this many seconds',
        type=positive_float,
        default=None,
    )
    parser.add_argument(
        '--wait-queue',
        help='Keep polling the queue item until the build gets a number',
        action='store_true',
    )
    parser.add_argument(
        '-k',
        '--insecure',
        help='Do not verify SSL certificates',
        action='store_true',
    )
    parser.add_argument(
        '-q', '--quiet', help='Do not print user messages', action='store_true'
    )
    parser.add_argument(
        '--debug', help='Print debug output', action='store_true'
    )
    parser.add_argument(
        '--version',
        action='version',
        version='%(prog)s v{}'.format(__version__),
    )
    parser.add_argument(
        'params',
        help='(Optional) A list of build parameters in the form key=value',
        nargs='*',
    )
    args = parser.parse_args(argv)

    CONFIG['quiet'] = args.quiet
    CONFIG['debug'] = args.debug

    host = args.host.strip().rstrip('/')
    if not host:
        raise ConfigurationError(
            'No Jenkins host given. Set JENKINS_HOST_URL or use --host'
        )
    if not re.search(r'^https?://[^/]+', host):
        raise ConfigurationError(
            'Invalid Jenkins host "{}". It must start with http:// or '
            'https://'.format(host)
        )
    job = args.job.strip().strip('/')
    if not job:
        raise ConfigurationError('No job given. Use -job <name>')

    try:
        params = dict(map(parse_kwarg, args.params))
    except ValueError as error:
        raise ConfigurationError(str(error))
    return Config(
        host=host,
        username=args.user,
        token=args.token,
        job=job,
        params=params,
        interval=args.interval,
        timeout=args.timeout,
        wait_queue=args.wait_queue,
        verify_ssl=not args.insecure,
    )


def job_path(job):
    """
    Translate a job name into its url path. Jobs inside folders are given as
    folder/name and become job/folder/job/name. The already expanded
    folder/job/name spelling is accepted too: a 'job' segment between two
    names is taken as a separator.
    """
    parts = [p for p in job.strip('/').split('/') if p]
    names = []
    separator = False
    for i, part in enumerate(parts):
        if part == 'job' and 0 < i < len(parts) - 1 and not separator:
            separator = True
            continue
        separator = False
        names.append(part)
    return '/'.join('job/' + quote(p, safe='') for p in names)


def init_ssl(verify=True):
    """
    Create an SSL context, loading any extra certificates pointed at by
    SSL_CERT_FILE and SSL_CERT_DIR.
    """
    context = ssl.create_default_context()
    if verify:
        ca_file = os.environ.get('SSL_CERT_FILE', None)
        ca_dir = os.environ.get('SSL_CERT_DIR', None)
        if ca_file or ca_dir:
            context.load_verify_locations(ca_file, ca_dir)
    else:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

    return context


class NoPostRedirect(HTTPRedirectHandler):
    """
    Follow redirects for GETs only. Jenkins answers build requests with a
    redirect to the queue item, which we want to read, not follow.
    """

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        if req.get_method() != 'GET':
            return None
        return super().redirect_request(req, fp, code, msg, headers, newurl)


class Session:
    def __init__(self, config):
        self.config = config
        self.base = config.host.rstrip('/')
        self.headers = {'User-Agent': 'trigger-jenkins/' + __version__}
        self.context = init_ssl(config.verify_ssl)
        self.jar = CookieJar()
        self.opener = build_opener(
            HTTPCookieProcessor(self.jar),
            HTTPSHandler(context=self.context),
            NoPostRedirect(),
        )
        self.credentials = Credentials(config.username, config.token, None)

        if config.username or config.token:
            auth = '{}:{}'.format(config.username, config.token)
            basic = base64.b64encode(auth.encode('utf-8')).decode('ascii')
            self.headers['Authorization'] = 'Basic {}'.format(basic)

    def job_url(self, job, number=None):
        url = '{}/{}'.format(self.base, job_path(job))
        if number is not None:
            url += '/{}'.format(number)
        return url

    def get_url(self, url, method='GET'):
        """
        Send a request with this session's headers and cookies, and return the
        response with its decoded body in ``.text``.

        POST requests are sent with an empty body. If the server answers a
        POST with a redirect, the redirect response itself is returned.
        """
        data = b'' if method == 'POST' else None
        req = Request(url, data, headers=self.headers.copy(), method=method)
        debug(method, url)
        try:
            response = self.opener.open(req)
        except HTTPError as error:
            if method == 'GET' or error.code not in REDIRECT_CODES:
                raise
            response = error
        response.content = response.read()
        response.text = response.content.decode('utf-8', errors='replace')
        return response

    def get_json(self, url):
        response = self.get_url(url)
        try:
            body = json.loads(response.text)
        except ValueError as error:
            raise JenkinsAPIError(
                'Invalid JSON response from {}: {}'.format(url, error)
            )
        if not isinstance(body, dict):
            raise JenkinsAPIError(
                'Unexpected JSON response from {}: {}'.format(url, body)
            )
        return body

    def get_crumb(self):
        """
        Get the crumb Jenkins requires as CSRF protection and automatically
        add it to this session's default headers.
        """
        url = self.base + '/crumbIssuer/api/json'
        response = self.get_json(url)
        try:
            crumb = Crumb(response['crumbRequestField'], response['crumb'])
        except KeyError:
            raise JenkinsAPIError(
                'Malformed crumb issuer response: {}'.format(response)
            )
        self.headers[crumb.field] = crumb.value
        self.credentials = self.credentials._replace(crumb=crumb)
        return crumb

    def trigger_build(self, job, params=None):
        """
        Submit a build with the given parameters and return its build number.

        The queue item is only checked once, unless the session was configured
        to wait for it. A build that has not left the queue yet gets the
        number 0.
        """
        url = self.job_url(job) + '/buildWithParameters'
        if params:
            url += '?' + urlencode(params)
        log('Sending build request for', job)
        response = self.get_url(url, method='POST')

        location = response.headers.get('Location', None)
        if not location:
            raise JenkinsAPIError(
                'Something went wrong with the Jenkins API: the build request '
                'returned no queue location'
            )

        if self.config.wait_queue:
            return self.wait_queue(location, self.config.interval)

        queue = self.get_queue_info(location)
        if queue.cancelled:
            raise BuildCancelled('Build was cancelled')
        if not queue.number:
            errlog(
                'Warning: queue item {} has no build number yet'.format(
                    location
                )
            )
        return queue.number

    def get_queue_info(self, location):
        """
        Check the status of a queue item.
        """
        url = location.rstrip('/') + '/api/json'
        response = self.get_json(url)
        executable = response.get('executable', None) or {}
        return QueueInfo(
            number=int(executable.get('number', 0) or 0),
            cancelled=bool(response.get('cancelled', False)),
        )

    def wait_queue(self, location, interval=DEFAULT_INTERVAL):
        """
        Wait until the queue item is assigned a build number.
        """
        while True:
            queue = self.get_queue_info(location)
            if queue.cancelled:
                raise BuildCancelled('Build was cancelled')
            if queue.number:
                return queue.number
            log('Build queued')
            time.sleep(interval)

    def get_build_info(self, job, number):
        url = self.job_url(job, number) + '/api/json'
        response = self.get_json(url)
        return BuildInfo(
            building=bool(response.get('building', False)),
            result=response.get('result', None),
        )

    def get_log_chunk(self, job, number, start=0):
        """
        Fetch the console log from byte offset `start`.

        Returns a (content, size, more) tuple, where content is the raw bytes,
        size is the offset to ask for next and more tells whether the server
        has more text ready.
        """
        url = self.job_url(job, number)
        url += '/logText/progressiveText?start={}'.format(start)
        response = self.get_url(url)

        size = response.headers.get('X-Text-Size', None)
        try:
            size = int(size)
        except (TypeError, ValueError):
            raise JenkinsAPIError(
                'Invalid X-Text-Size header: {}'.format(size)
            )

        more = response.headers.get('X-More-Data', None)
        try:
            more = parse_bool(more) if more else False
        except ValueError as error:
            raise JenkinsAPIError(str(error))

        return response.content, size, more

    def follow_build(
        self, job, number, interval=DEFAULT_INTERVAL, timeout=None, out=None
    ):
        """
        Poll the build and print its log until the log has been read
        completely and the build is no longer running.

        Returns the last BuildInfo seen.
        """
        if out is None:
            out = sys.stdout
        deadline = None
        if timeout is not None:
            deadline = time.monotonic() + timeout

        log('Following build #{} of {}'.format(number, job))
        # offsets are in bytes, so a character may be split between chunks
        decoder = codecs.getincrementaldecoder('utf-8')(errors='replace')
        cursor = 0
        while True:
            info = self.get_build_info(job, number)
            content, cursor, more = self.get_log_chunk(job, number, cursor)
            done = not more and not info.building
            text = decoder.decode(content, final=done)
            if text:
                out.write(text)
                out.flush()

            if done:
                return info

            if deadline is not None and time.monotonic() >= deadline:
                raise BuildTimeout(
                    'Build #{} did not finish within {} seconds'.format(
                        number, timeout
                    )
                )
            time.sleep(interval)


def report_result(info):
    """
    Return the exit status for a finished build.
    """
    if info.result != 'SUCCESS':
        errlog('Unexpected build result', info.result)
        return 1
    log('Build finished with result', info.result)
    return 0


def main(argv=None, environ=None):
    """
    Trigger a Jenkins build, stream its log and wait for it to finish.
    """
    config = parse_args(argv, environ)
    session = Session(config)
    session.get_crumb()

    number = session.trigger_build(config.job, config.params)
    info = session.follow_build(
        config.job, number, interval=config.interval, timeout=config.timeout
    )
    return report_result(info)


def cli():
    try:
        sys.exit(main())
    except ConfigurationError as error:
        errlog('Configuration error:', error)
        sys.exit(2)
    except KeyboardInterrupt:
        errlog('Interrupted')
        sys.exit(130)
    except Exception as error:
        if CONFIG['debug']:
            raise
        errlog('Err:', error)
        sys.exit(1)


if __name__ == '__main__':
    cli()

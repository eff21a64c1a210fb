from setuptools import setup
from trigger_jenkins import __version__

setup(
    name="trigger_jenkins",
    description="Trigger a parameterized Jenkins build and stream its log "
    "until it finishes",
    version=__version__,
    classifiers=[
        'Development Status :: 5 - Production/Stable',
        'Intended Audience :: Developers',
        'Topic :: Software Development :: Build Tools',
        'Environment :: Console',
        'Operating System :: OS Independent',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: Implementation :: CPython',
    ],
    python_requires='>=3.6',
    packages=['trigger_jenkins'],
    entry_points={
        'console_scripts': [
            'trigger_jenkins=trigger_jenkins.trigger_jenkins:cli'
        ]
    },
    install_requires=[],
    extras_require={
        'dev': [
            'pytest',
            'pytest-cov',
            'flake8'
        ]
    },
)

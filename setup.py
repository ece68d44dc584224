"""
Provides project-level commands. Commands are run via `python setup.py <command> [args]`

Commands available:

- apidoc: regenerate reST docs for inline pydoc comments
- autobuild: watch for changes to the reST files and rebuild the documentation, refreshing
   the browser.
"""

from setuptools import setup, Command

import os


class RunInRootCommand(Command):
    user_options = []

    def initialize_options(self):
        self.cwd = None

    def finalize_options(self):
        self.cwd = os.getcwd()

    def run(self):
        assert os.getcwd() == self.cwd, 'Must be in package root: %s' % self.cwd
        self.runcmd()

    def runcmd(self):
        pass


class ApiDocCommand(RunInRootCommand):
    description = "regenerates the API docs"

    def runcmd(self):
        os.system('"sphinx-apidoc" -f -e -o docs/apidoc src/sortbridge')


class AutoBuildCommand(RunInRootCommand):
    description = "watches the docs for changes and rebuilds them, automatically refreshing the browser page"

    def runcmd(self):
        os.system("sphinx-autobuild docs docs/_build/html -B")


setup(
    name='sortbridge',
    version='0.1.0',
    description='Resilient multi-endpoint bridge between sorting-line signal sources and visualization front ends.',
    url='',
    author='',
    author_email='',
    license='LGPL',
    package_dir={'': 'src'},
    packages=['sortbridge', 'sortbridge.conduit', 'sortbridge.config', 'sortbridge.connector',
              'sortbridge.protocol', 'sortbridge.support'],
    package_data={'sortbridge.config': ['*.cfg']},
    python_requires='>=3.6',
    install_requires=['configobj'],
    extras_require={
        'test': ['pytest', 'PyHamcrest>=2.0.3', 'timeout-decorator']
    },
    entry_points={
        'console_scripts': ['sortbridge=sortbridge.__main__:main']
    },
    zip_safe=False,
    cmdclass={
        'apidoc': ApiDocCommand,
        'autobuild': AutoBuildCommand
    }
)

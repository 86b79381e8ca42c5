import re

from setuptools import find_packages, setup

with open('src/stalkwire/__init__.py') as f:
    version = re.search(r'__version__ = "(.+)"', f.read()).group(1)

setup(
    name='stalkwire',
    version=version,
    description='A Python 3 client for the beanstalkd work queue protocol',
    long_description=open('README.rst').read(),
    license='MIT',
    package_dir={'': 'src'},
    packages=find_packages('src'),
    python_requires='>=3.7',
    extras_require={
        'test': ['pytest'],
    },
    classifiers=[
        'Intended Audience :: Developers',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
        'Programming Language :: Python :: 3 :: Only',
        'Programming Language :: Python :: 3.7',
        'Programming Language :: Python :: 3.8',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
    ],
)

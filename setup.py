"""
Setup script for the run coach ingestion tools
Run: pip install -e .[test]
"""

from setuptools import setup

setup(
    name='runcoach',
    version='0.1.0',
    description='FIT/Strava run ingestion with pace, TRIMP load and run classification',
    python_requires='>=3.9',
    py_modules=['analyzer', 'cli', 'constants', 'db', 'errors', 'hr_zones', 'ingest', 'metrics'],
    packages=['core'],
    install_requires=[
        'fitparse>=1.2.0',
        'pandas>=2.0',
        'numpy>=1.24',
    ],
    extras_require={
        'test': ['pytest>=7.0'],
    },
    entry_points={
        'console_scripts': ['runcoach=cli:main'],
    },
)

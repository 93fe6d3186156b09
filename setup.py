#package configuration file
#!/usr/bin/env python3
from setuptools import setup
setup(
    name='treesnap',
    version='1.0',
    description='Local content-addressed snapshot store for a file tree',
    packages=['treesnap'],
    python_requires='>=3.8',
    install_requires=[
        'rich',
    ],
    extras_require={
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts':[
            'treesnap=treesnap.cli:main'
        ]
    }
)

from setuptools import setup, find_packages  # type: ignore

setup(
    name='conduittools',
    version='0.1.0',
    packages=find_packages(exclude=['tests', 'tests.*']),
    install_requires=[
        'pandas',
        'sqlalchemy>=2.0',
        'cryptography',
        'psycopg2-binary',
        'openai>=1.0',
        'loguru',
        'sqlparse<0.5.4',
    ],
    extras_require={
        'test': ['pytest', 'httpx'],
    },
    include_package_data=True,
    package_data={
        'conduittools': [
            'sql/*/*.sql',      # Include all .sql files in sql/ subdirectories
        ],
    },
    description='Conduit conditional payment ledger, mirror and reconciler',
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
    classifiers=[
        'Programming Language :: Python :: 3',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
    ],
    python_requires='>=3.11',
    entry_points={
        'console_scripts': [
            'conduittools=conduittools.cli:main',
        ],
    },
)

from setuptools import setup, find_packages

setup(
    name='nodectl',
    version='0.1.0',
    packages=find_packages(),
    include_package_data=True,
    package_data={
        'nodectl': ['catalog/*.yaml', 'catalog/templates/*.yaml'],
    },
    install_requires=[
        'typer[all]',
        'fastapi',
        'uvicorn',
        'kubernetes',
        'python-dotenv',
        'requests',
        'paramiko',
        'pydantic',
        'pyyaml',
        'jsonschema',
        'cryptography',
    ],
    extras_require={
        'test': [
            'pytest',
            'httpx',
        ],
    },
    entry_points={
        'console_scripts': [
            'nodectl=nodectl.cli:app'
        ]
    },
    author='Your Name',
    description='Remote node provisioning and application lifecycle toolkit for single-node Kubernetes hosts',
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: OS Independent',
    ],
    python_requires='>=3.8',
)

from setuptools import setup, find_packages

setup(
    name='pvek3s',
    version='0.1.0',
    packages=find_packages(),
    include_package_data=True,
    install_requires=[
        'typer[all]',
        'rich',
        'pydantic>=2',
        'pydantic-settings',
        'pyyaml',
        'python-dotenv',
        'requests'
    ],
    extras_require={
        'test': [
            'pytest'
        ]
    },
    entry_points={
        'console_scripts': [
            'pvek3s=pvek3s.cli:run',
            'k3s-control-install=pvek3s.commands.install:control_app',
            'k3s-worker-install=pvek3s.commands.install:worker_app'
        ]
    },
    author='Your Name',
    description='Provision a three node K3s cluster on Proxmox VE LXC containers',
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: POSIX :: Linux',
    ],
    python_requires='>=3.8',
)

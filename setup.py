from setuptools import setup, find_packages

setup(
    name='kubeprep',
    version='0.1.0',
    packages=find_packages(exclude=['kubeprep.tests', 'kubeprep.tests.*']),
    package_data={
        'kubeprep.modules.provision': ['templates/*.j2'],
    },
    install_requires=[
        'typer',
        'requests',
        'tenacity',
        'jinja2',
        'pyyaml',
        'python-dotenv',
    ],
    extras_require={
        'test': [
            'pytest',
        ],
    },
    entry_points={
        'console_scripts': [
            'kubeprep=kubeprep.cli:app'
        ]
    },
    description='Prepare a Linux host as a kubeadm control-plane or worker node',
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: POSIX :: Linux',
        'Topic :: System :: Clustering',
    ],
    python_requires='>=3.9',
)

from importlib import import_module
from setuptools import setup

with open('README.rst') as f:
    readme = f.read()

setup(
    name='anvil-rv',
    version=import_module('anvil').__version__,
    description='Interactive single-line RISC-V assembler for hardware bring-up',
    long_description=readme,
    long_description_content_type='text/x-rst',
    packages=['anvil'],
    include_package_data=True,
    install_requires=[
        'pyserial',
        'rich',
    ],
    extras_require={
        'test': [
            'pytest',
        ],
    },
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Environment :: Console',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
        'Programming Language :: Assembly',
        'Programming Language :: Python :: 3',
        'Topic :: Software Development',
        'Topic :: Software Development :: Assemblers',
        'Topic :: Software Development :: Embedded Systems',
    ],
    python_requires='>=3.6',
    entry_points={
        'console_scripts': [
            'anvil = anvil.repl:cli_main',
        ],
    },
)

from setuptools import setup

# Read version from portkiller/VERSION
with open('portkiller/VERSION') as f:
    VERSION = f.read().strip()

setup(
    name='portkiller',
    version=VERSION,
    description='Interactive curses-based viewer for processes bound to network ports, with kill',
    long_description=open('README.md', encoding='utf-8').read(),
    long_description_content_type='text/markdown',
    license='MIT',
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'Intended Audience :: System Administrators',
        'License :: OSI Approved :: MIT License',
        'Operating System :: POSIX',
        'Programming Language :: Python :: 3',
        'Topic :: System :: Networking :: Monitoring',
    ],
    python_requires='>=3.8',
    packages=['portkiller'],
    package_data={'portkiller': ['VERSION']},
    install_requires=[
        'psutil',
        'pyyaml',
    ],
    extras_require={
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts': [
            'portkiller=portkiller:cli_entry',
        ],
    },
)

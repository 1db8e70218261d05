from setuptools import setup, find_packages

package_name = "condor-annex"
long_description = open("README.rst", "r").read()

setup(
    name=package_name,
    version="1.0.0",
    author="The HTCondor Team",
    author_email="htcondor-admin@cs.wisc.edu",
    url="http://htcondor.org/",
    project_urls={
        "Source Code": "https://github.com/htcondor/htcondor",
    },
    license="ASL 2.0",
    keywords="htcondor annex aws cloudformation htc dhtc condor",
    description="Lease AWS capacity to an HTCondor pool",
    long_description=long_description,
    package_dir={"": "src/condor_tools"},
    packages=find_packages("src/condor_tools", include=["condor_annex", "condor_annex.*"]),
    python_requires=">=3.8",
    install_requires=[
        "htcondor>=24.0",
        "boto3",
        "botocore",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "condor_annex = condor_annex.cli:main",
        ],
    },
    zip_safe=False,
    classifiers=[
        "Development Status :: 5 - Production/Stable",
        "Environment :: Console",
        "Intended Audience :: Science/Research",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: POSIX :: Linux",
        "Programming Language :: Python",
        "Programming Language :: Python :: 3",
        "Topic :: Scientific/Engineering",
        "Topic :: System :: Distributed Computing",
    ],
)

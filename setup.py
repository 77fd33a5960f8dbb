from setuptools import setup
import localphase


def readme():
    with open("README.md") as f:
        return f.read()


setup(
    name="localphase",
    version=localphase.__version__,
    description="localphase: haplotype-based local phasing of variant calls",
    long_description=readme(),
    url="https://github.com/PacificBiosciences/localphase",
    author="Xiao Chen",
    author_email="xchen@pacificbiosciences.com",
    license="BSD-3-Clause-Clear",
    packages=["localphase"],
    package_data={"localphase": ["data/*"]},
    install_requires=["pysam", "numpy", "pyyaml"],
    tests_require=["pytest"],
    extras_require={"test": ["pytest"]},
    entry_points={"console_scripts": ["localphase=localphase.__main__:main"]},
    long_description_content_type="text/markdown",
)

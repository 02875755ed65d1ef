from setuptools import setup, find_packages

setup(
    name="tracepoint",
    version="0.1.0",
    description="Load-time instrumentation and call replay for interactive Python development",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    author="Tracepoint Developers",
    python_requires=">=3.10",
    packages=find_packages(include=["tracepoint", "tracepoint.*"]),
    install_requires=[
        "pydantic>=2.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
        ]
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Software Development :: Debuggers",
        "Topic :: Software Development :: Code Generators",
    ],
)

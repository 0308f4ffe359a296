# Copyright © 2025 Leadpoet

import re
import os
import codecs
from os import path
from io import open
from setuptools import setup, find_packages


here = path.abspath(path.dirname(__file__))

with open(path.join(here, "README.md"), encoding="utf-8") as f:
    long_description = f.read()

with codecs.open(os.path.join(here, "leadpipe/__init__.py"), encoding="utf-8") as init_file:
    version_match = re.search(r"^__version__ = ['\"]([^'\"]*)['\"]", init_file.read(), re.M)
    if not version_match:
        raise RuntimeError("Unable to find version string in leadpipe/__init__.py")
    version_string = version_match.group(1)


requirements = [
    # HTTP and networking
    "httpx>=0.28.1",
    "curl_cffi>=0.7.0",

    # Headless rendering
    "playwright>=1.40.0",

    # Data processing
    "numpy>=1.24.0",

    # Storage
    "boto3>=1.40.0",
    "supabase>=2.0.0",
    "postgrest>=0.13.0",

    # Configuration
    "python-dotenv>=1.0.0",

    # LLM classifier
    "openai>=2.1.0",
    "publicsuffix2>=2.20191221",
    "jsonschema>=4.25.1",

    # Models
    "pydantic>=2.0.0",

    # Utilities
    "click>=8.1.0",
    "tenacity>=8.2.0",
]

test_requirements = [
    "pytest>=7.0",
]

setup(
    name="leadpipe",
    version=version_string,
    description="Scrape-and-score pipeline that rates business leads for acquisition fit",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/leadpoet/leadpipe",
    author="Leadpoet",
    author_email="hello@leadpoet.com",
    license="MIT",
    packages=find_packages(include=['leadpipe', 'leadpipe.*']),
    include_package_data=True,
    python_requires=">=3.10",
    install_requires=requirements,
    extras_require={
        "test": test_requirements,
    },
    entry_points={
        "console_scripts": [
            "leadpipe=leadpipe.cli:main",
        ]
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3 :: Only",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Internet :: WWW/HTTP",
    ],
)

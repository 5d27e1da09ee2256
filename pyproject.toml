[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "stratus"
version = "2.1.2"
description = "A read-only OCI image registry served from S3-compatible object storage, with a pusher for OCI layout directories"
requires-python = ">=3.10"
dependencies = [
    "flask",
    "requests",
]
keywords = ["oci", "registry", "container", "docker", "s3", "object-storage"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Web Environment",
    "Framework :: Flask",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
    "Topic :: System :: Software Distribution",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[project.scripts]
stratus = "stratus.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["stratus"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "I", "B", "UP"]

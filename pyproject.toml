[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "airsane"
version = "0.1.0"
description = "Small threaded HTTP server with access rules, HTML page building and network address change notification"
requires-python = ">=3.10"
dependencies = [
    "psutil",
]
keywords = ["http", "server", "access-control", "html", "netlink"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["airsane"]

[tool.pytest.ini_options]
addopts = "-ra"

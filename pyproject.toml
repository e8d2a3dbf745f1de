[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "dnscrypt-proxy"
version = "2.1.6"
description = "Building blocks of a filtering DNS proxy: query plugins, pattern matching, caching and DNS message helpers"
requires-python = ">=3.10"
dependencies = [
    "dnspython",
]
keywords = ["dns", "dnscrypt", "proxy", "filtering", "cache", "cloaking"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Name Service (DNS)",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["dnscrypt_proxy"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true

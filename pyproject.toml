[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "retrievalkit"
version = "0.1.0"
description = "Building blocks for retrieving content-addressed data: candidate streams, protocol splitting, racing and sequential coordination, query ranking and UnixFS selectors"
requires-python = ">=3.10"
dependencies = []
keywords = ["retrieval", "content-addressing", "coordination", "racing", "selectors"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["retrievalkit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"

"""
Shared pytest fixtures for incremake test suite.

Provides common fixtures using the IncremakeTestFactory pattern: a real
project tree under tmp_path, a toy in-process compiler and in-memory
dependency cache. No external compiler required.

Usage in tests:
    def test_something(incremake_factory):
        incremake_factory.project.add_module("app")
        unit = incremake_factory.project.add_source("app", "pkg/Foo.java")
        driver = incremake_factory.create_driver([unit])
        items = driver.compile()

    def test_with_data(app_env):
        # app_env comes with module "app" and two sources
        driver = app_env.create_driver(app_env.project.units())
"""

import logging

import pytest
from tests.factories import IncremakeTestFactory


@pytest.fixture
def incremake_factory(tmp_path):
    """
    Create an empty IncremakeTestFactory instance.

    Use this when you need fine-grained control over modules and sources.

    Example:
        def test_cycle(incremake_factory):
            incremake_factory.project.add_module("a")
            incremake_factory.project.add_module("b")
            incremake_factory.chunker.depends("a", "b")
            incremake_factory.chunker.depends("b", "a")
    """
    return IncremakeTestFactory(tmp_path)


@pytest.fixture
def app_env(tmp_path):
    """
    Create an IncremakeTestFactory with a single-module project.

    Pre-populated with module "app" (one output dir) and:
    - pkg/Foo.java declaring Foo and Foo$Inner
    - pkg/Bar.java declaring Bar

    Example:
        def test_compile(app_env):
            items = app_env.create_driver(app_env.project.units()).compile()
            assert len(items) == 3
    """
    factory = IncremakeTestFactory(tmp_path)
    factory.project.add_module("app")
    factory.project.add_source("app", "pkg/Foo.java", classes=["Foo", "Foo$Inner"])
    factory.project.add_source("app", "pkg/Bar.java")
    return factory


@pytest.fixture(autouse=True)
def debug_logging(caplog):
    """Capture incremake debug logs for every test."""
    caplog.set_level(logging.DEBUG, logger="incremake")
    yield

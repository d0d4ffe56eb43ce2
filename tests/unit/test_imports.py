"""
Import validation tests.

These tests ensure every module imports cleanly, catching missing
dependencies or circular imports before a subscriber is deployed.

Run with: pytest tests/unit/test_imports.py -v
"""

import importlib
import sys
from pathlib import Path

import pytest


# Add src to path to simulate Lambda environment
SRC_PATH = Path(__file__).parent.parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

API_HANDLERS = [
    "handlers.main",
    "handlers.health_check",
    "handlers.event_ingestion",
    "handlers.customer_context",
]

MODULES = [
    "config.settings",
    "handlers.subscriber",
    "handlers.wiring",
    "models.customer",
    "models.envelope",
    "models.knowledge",
    "models.outcome",
    "repositories.schema",
    "repositories.store",
    "services.context_builder",
    "services.event_processor",
    "services.identity_resolver",
    "services.knowledge_search",
    "services.subscriber",
    "utils.cache_service",
    "utils.error_handling",
    "utils.logging_config",
    "utils.validators",
]


@pytest.mark.parametrize("module_name", API_HANDLERS)
def test_api_handler_exposes_lambda_handler(module_name: str):
    """Each API handler module imports and exposes lambda_handler."""
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        pytest.fail(f"Failed to import {module_name}: {e}")
    assert hasattr(module, "lambda_handler"), f"{module_name} missing lambda_handler"


@pytest.mark.parametrize("module_name", MODULES)
def test_module_import(module_name: str):
    try:
        importlib.import_module(module_name)
    except ImportError as e:
        pytest.fail(f"Failed to import {module_name}: {e}")


def test_subscriber_entrypoint_is_callable():
    module = importlib.import_module("handlers.subscriber")
    assert callable(module.main)


@pytest.mark.parametrize(
    "package", ["config", "handlers", "models", "repositories", "services", "utils"]
)
def test_no_src_prefix(package: str):
    """Modules must import from the src/ root, never via 'src.' (breaks when deployed)."""
    for py_file in (SRC_PATH / package).glob("*.py"):
        content = py_file.read_text()
        assert "from src." not in content, f"{py_file.name} contains 'from src.' import"
        assert "import src." not in content, f"{py_file.name} contains 'import src.' import"

"""
Pytest fixtures for the FMEA backend tests.
"""
import os
import shutil
import tempfile

import pytest

# Keep tests away from any real key in the developer's environment
os.environ.pop('GOOGLE_API_KEY', None)

from fmea_app import create_app
from fmea_app.services import fmea_service
from fmea_app.monitoring import get_request_metrics


@pytest.fixture
def app():
    """Create an application instance backed by a temporary data directory."""
    data_dir = tempfile.mkdtemp()
    # Request metrics are process-global; start each test from a clean slate
    get_request_metrics().reset()

    flask_app = create_app('testing', overrides={
        'DATA_PATH': os.path.join(data_dir, 'fmea-data.json'),
        'LLM_CONFIG_PATH': os.path.join(data_dir, 'llm-config.json'),
    })

    yield flask_app

    shutil.rmtree(data_dir, ignore_errors=True)


@pytest.fixture
def client(app):
    """Create a test client for the application."""
    return app.test_client()


@pytest.fixture
def app_context(app):
    with app.app_context():
        yield app


@pytest.fixture
def sample_project():
    """Payload for a pump FMEA project."""
    return {
        "name": "Cooling Water Pump",
        "description": "FMEA for the main cooling water pump",
        "asset": {
            "name": "Pump P-101",
            "assetId": "P-101",
            "type": "Centrifugal pump",
            "context": "Cooling water circuit",
            "criticality": "high",
            "standards": ["SAE J1739"],
        },
    }


@pytest.fixture
def populated_project(app_context, sample_project):
    """
    A project with one component and two failure modes:
    - 'Seal leakage': cause O=5, effect S=7, control D=3 -> RPN 105
    - 'Bearing seizure': cause O=4, effect S=8, no controls -> RPN 320
    Plus one open and one completed action on the seal failure mode.
    """
    project = fmea_service.create_project(sample_project)
    component = fmea_service.create_component(project['id'], {"name": "Mechanical seal", "function": "Contain fluid"})

    seal = fmea_service.create_failure_mode(component['id'], {"description": "Seal leakage", "processStep": "Operation"})
    fmea_service.create_child('causes', seal['id'], {"description": "Seal face wear", "occurrence": 5})
    fmea_service.create_child('effects', seal['id'], {"description": "Fluid loss", "severity": 7})
    fmea_service.create_child('controls', seal['id'], {"type": "detection", "description": "Leak sensor", "detection": 3})
    fmea_service.create_child('actions', seal['id'], {"description": "Upgrade seal", "status": "open"})
    fmea_service.create_child('actions', seal['id'], {"description": "Add inspection", "status": "completed"})

    bearing = fmea_service.create_failure_mode(component['id'], {"description": "Bearing seizure"})
    fmea_service.create_child('causes', bearing['id'], {"description": "Lubrication loss", "occurrence": 4})
    fmea_service.create_child('effects', bearing['id'], {"description": "Pump stops", "severity": 8})

    return {
        "project": project,
        "component": component,
        "seal": seal,
        "bearing": bearing,
    }

import copy

import pytest

from data_loaders import Employee
from template_config import TemplateConfigStore, default_template_config_dict


@pytest.fixture
def employee():
    return Employee(
        dni="12345678",
        first_name="JUAN",
        last_name="PEREZ",
        position="DOCENTE",
        email="juan.perez@unamad.edu.pe",
    )


@pytest.fixture
def config_dict():
    return copy.deepcopy(default_template_config_dict())


@pytest.fixture
def store(tmp_path, config_dict):
    s = TemplateConfigStore(tmp_path / "templates" / "config.json")
    s.save(config_dict)
    return s

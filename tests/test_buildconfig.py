import os

import pytest

from nerdkit.buildconfig import parse_build_config
from nerdkit.projectloader import BuildConfig, Project


@pytest.fixture
def project(tmp_path):
    return Project(name="proj", working_dir=str(tmp_path))


def test_context_last_and_tag_first(project):
    b = parse_build_config(BuildConfig(context="./fooctx"), project, "proj_foo")
    assert b.build_args[0] == "-t=proj_foo"
    assert b.build_args[-1] == project.relative_path("fooctx")
    assert b.force is False


def test_target_and_args(project):
    cfg = BuildConfig(context="./barctx", target="bartgt", args={"A": "1", "B": None})
    b = parse_build_config(cfg, project, "barimg")
    assert "--target=bartgt" in b.build_args
    assert "--build-arg=A=1" in b.build_args
    assert "--build-arg=B" in b.build_args


def test_relative_dockerfile_joined(project):
    cfg = BuildConfig(context="ctx", dockerfile="Dockerfile.dev")
    b = parse_build_config(cfg, project, "img")
    expected = os.path.join(project.relative_path("ctx"), "Dockerfile.dev")
    assert "-f=" + expected in b.build_args


def test_missing_context(project):
    with pytest.raises(ValueError):
        parse_build_config(BuildConfig(), project, "img")


def test_url_context(project):
    with pytest.raises(ValueError):
        parse_build_config(BuildConfig(context="git://example.com/repo"), project, "img")
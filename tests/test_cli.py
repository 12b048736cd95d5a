"""Tests for the command line interface."""

from pathlib import Path
from unittest import mock

import pytest

from keyvisual.main import main, default_bake_output
from tests.conftest import png_bytes


def test_list_presets(capsys):
    main(['list-presets'])
    out = capsys.readouterr().out
    assert 'thoughtform-gateway' in out
    assert 'Total: 5 presets' in out


def test_sample(square_png, capsys):
    main(['sample', str(square_png), '--max-particles', '500', '--seed', '1'])
    out = capsys.readouterr().out
    assert 'Image: 64x64' in out
    assert 'contour' in out
    assert 'total' in out


def test_bake_then_inspect(square_png, tmp_path, capsys):
    output = tmp_path / "out" / "square.tfpc"
    main(['bake', str(square_png), '--preset', 'preview', '-o', str(output)])
    assert output.exists()
    assert 'Created:' in capsys.readouterr().out

    main(['inspect', str(output)])
    out = capsys.readouterr().out
    assert out.startswith('TFPC v1:')
    assert 'start=0' in out
    assert 'Art direction:' in out


def test_bake_default_output(square_png):
    main(['bake', str(square_png), '--max-particles', '100'])
    assert square_png.with_suffix('.tfpc').exists()


def test_simulate_numpy(square_png, capsys):
    main(['simulate', str(square_png), '--max-particles', '200', '--steps', '2', '--backend', 'numpy'])
    out = capsys.readouterr().out
    assert 'numpy' in out
    assert 'Mean distance to origin:' in out


def test_simulate_baked_cloud(square_png, tmp_path, capsys):
    output = tmp_path / "square.tfpc"
    main(['bake', str(square_png), '--max-particles', '100', '-o', str(output)])
    main(['simulate', str(output), '--steps', '1', '--backend', 'numpy', '--seed', '2'])
    assert 'Mean distance to origin:' in capsys.readouterr().out


def test_error_exits_nonzero(tmp_path, capsys):
    with pytest.raises(SystemExit) as exc:
        main(['inspect', str(tmp_path / "missing.tfpc")])
    assert exc.value.code == 1
    assert capsys.readouterr().out.startswith('Error:')


def test_unknown_preset(square_png, capsys):
    with pytest.raises(SystemExit) as exc:
        main(['sample', str(square_png), '--preset', 'nope'])
    assert exc.value.code == 1
    assert 'Unknown sampler preset' in capsys.readouterr().out


def test_no_command():
    with pytest.raises(SystemExit) as exc:
        main([])
    assert exc.value.code == 1


def test_default_bake_output():
    assert default_bake_output("art/hero.png") == Path("art/hero.tfpc")
    assert default_bake_output("https://cdn.example.com/assets/hero.png?v=2") == Path("hero.tfpc")
    assert default_bake_output("https://cdn.example.com/") == Path("keyvisual.tfpc")


def test_bake_url_writes_to_working_directory(square_image, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    response = mock.Mock(content=png_bytes(square_image))
    with mock.patch('keyvisual.core.loader.requests.get', return_value=response):
        main(['bake', 'https://cdn.example.com/assets/hero.png', '--max-particles', '100'])
    assert (tmp_path / "hero.tfpc").exists()

import json

from obs_local_controller.__main__ import build_parser, config_from_args


def parse(*argv):
    return config_from_args(build_parser().parse_args(list(argv)))


def test_defaults():
    cfg = parse()
    assert (cfg.OBS_HOST, cfg.OBS_PORT, cfg.OBS_PASSWORD) == ("localhost", 4455, "")
    assert cfg.WEB_ENABLED and not cfg.MIDI_ENABLED and not cfg.DEBUG


def test_flags_override_the_config_file(tmp_path):
    path = tmp_path / "controller.json"
    path.write_text(json.dumps({"version": 1, "overrides": {"OBS_HOST": "from-file", "WEB_PORT": 9000}}),
                    encoding="utf-8")
    cfg = parse("--config", str(path), "--addr", "studio-pc", "--port", "4460", "--pwd", "pw",
                "--debug", "--no-web", "--midi")
    assert cfg.OBS_HOST == "studio-pc"
    assert cfg.OBS_PORT == 4460
    assert cfg.OBS_PASSWORD == "pw"
    assert cfg.WEB_PORT == 9000
    assert cfg.DEBUG and cfg.MIDI_ENABLED
    assert not cfg.WEB_ENABLED
    assert cfg.session().url == "ws://studio-pc:4460"

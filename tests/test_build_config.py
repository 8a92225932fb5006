"""Tests for BuildConfig defaults, loading and overrides."""

import pytest

from zori_builder.build_config import GIB, BuildConfig, Desktop, load_build_config, with_overrides


class TestDefaults:
    def test_defaults(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HOME", str(tmp_path))
        cfg = BuildConfig()
        assert cfg.distro_name == "zori"
        assert cfg.workspace_root == tmp_path / "zori"
        assert cfg.desktop is Desktop.PLASMA
        assert cfg.installer_version == "v3.3.9"
        assert cfg.required_tools == ["git", "cmake", "make", "mkarchiso"]
        assert cfg.min_free_bytes == 20 * GIB
        assert cfg.retry_backoff == 2.0
        assert cfg.dry_run is False
        assert "-DCMAKE_INSTALL_PREFIX=/usr" in cfg.installer_cmake_args

    def test_explicit_empty_privilege(self):
        assert BuildConfig(raw={"privilege": {"command": []}}).privilege_command == []
        assert BuildConfig(raw={"privilege": {"command": ["doas"]}}).privilege_command == ["doas"]

    def test_display_managers(self):
        assert Desktop.PLASMA.display_manager == "sddm"
        assert Desktop.GNOME.display_manager == "gdm"
        assert Desktop.XFCE.display_manager == "lightdm"

    def test_unknown_desktop(self):
        with pytest.raises(ValueError):
            BuildConfig(raw={"desktop": "cde"}).desktop


class TestLoad:
    def test_yaml(self, tmp_path):
        p = tmp_path / "build.yaml"
        p.write_text("distro:\n  name: zori-dev\ndesktop: xfce\nlimits:\n  min_free_gb: 1.5\n")
        cfg = load_build_config(str(p))
        assert cfg.distro_name == "zori-dev"
        assert cfg.desktop is Desktop.XFCE
        assert cfg.min_free_bytes == int(1.5 * GIB)

    def test_empty_file_is_defaults(self, tmp_path):
        p = tmp_path / "build.yml"
        p.write_text("")
        assert load_build_config(str(p)).raw == {}

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_build_config(str(tmp_path / "nope.yaml"))

    def test_not_yaml(self, tmp_path):
        p = tmp_path / "build.json"
        p.write_text("{}")
        with pytest.raises(ValueError, match="YAML"):
            load_build_config(str(p))

    def test_not_a_mapping(self, tmp_path):
        p = tmp_path / "build.yaml"
        p.write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="mapping"):
            load_build_config(str(p))

    @pytest.mark.parametrize(
        "text,field",
        [
            ("desktop: kde\n", "desktop"),
            ("limits:\n  min_free_gb: abc\n", "min_free_bytes"),
            ("limits:\n  retry_backoff: [1]\n", "retry_backoff"),
            ("installer:\n  jobs: many\n", "make_jobs"),
            ("paths: /tmp/zori\n", "workspace_root"),
        ],
    )
    def test_bad_values_rejected_at_load(self, tmp_path, text, field):
        p = tmp_path / "build.yaml"
        p.write_text(text)
        with pytest.raises(ValueError, match=field):
            load_build_config(str(p))


class TestOverrides:
    def test_overrides_merge_without_mutating(self, tmp_path):
        base = BuildConfig(raw={"installer": {"jobs": 4, "version": "v3.3.0"}})
        cfg = with_overrides(
            base,
            workspace=str(tmp_path / "root"),
            desktop="gnome",
            installer_version="v3.3.9",
            min_free_gb=0,
            dry_run=True,
        )
        assert cfg.workspace_root == tmp_path / "root"
        assert cfg.desktop is Desktop.GNOME
        assert cfg.installer_version == "v3.3.9"
        assert cfg.make_jobs == 4
        assert cfg.min_free_bytes == 0
        assert cfg.dry_run is True
        assert base.installer_version == "v3.3.0"
        assert "desktop" not in base.raw

    def test_no_overrides(self):
        base = BuildConfig(raw={"desktop": "xfce"})
        assert with_overrides(base).raw == base.raw

    def test_bad_desktop_override(self):
        with pytest.raises(ValueError):
            with_overrides(BuildConfig(), desktop="cde")

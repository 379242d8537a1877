"""
Unit tests for build script generation.

Tests determinism, configure flags, conditional configuration blocks,
progress checkpoints and handling of custom module sources.
"""

import pytest

from forge_library.compiler import generate_script
from forge_library.compiler.progress import Checkpoint
from forge_library.compiler.progress import parse_progress_line
from forge_library.compiler.script import configure_flags
from forge_library.compiler.script import collect_dependencies
from forge_library.models import CompileOptions
from forge_library.registry import ModuleRegistry


def _script(registry: ModuleRegistry, **kwargs) -> str:
    kwargs.setdefault("version", "1.26.3")
    options = CompileOptions(**kwargs)
    return generate_script(options, registry.resolve(options.modules), registry.base_dependencies)


@pytest.mark.unit
class TestGenerateScript:
    """Test generate_script output."""

    def test_is_deterministic(self, registry: ModuleRegistry) -> None:
        """Test identical inputs give byte-identical scripts."""
        modules = registry.get_preset("standard").modules

        assert _script(registry, modules=list(modules)) == _script(registry, modules=list(modules))

    def test_ssl_and_http2_build(self, registry: ModuleRegistry) -> None:
        """Test a valid SSL plus HTTP/2 selection names the version and both flags."""
        script = _script(registry, modules=["http_ssl_module", "http_v2_module"])

        assert "1.26.3" in script
        assert "--with-http_ssl_module" in script
        assert "--with-http_v2_module" in script

    def test_selection_order_does_not_matter(self, registry: ModuleRegistry) -> None:
        """Test resolved selections in any order give the same script."""
        first = _script(registry, modules=["http_ssl_module", "ngx_brotli"])
        second = _script(registry, modules=["ngx_brotli", "http_ssl_module"])

        assert first == second

    def test_header_and_variables(self, registry: ModuleRegistry) -> None:
        """Test the script starts with a shebang and sets its variables."""
        script = _script(registry, modules=["http_ssl_module"], install_path="/opt/nginx")

        assert script.startswith("#!/bin/bash\n")
        assert "set -e\n" in script
        assert "NGINX_VERSION=1.26.3\n" in script
        assert "INSTALL_PATH=/opt/nginx\n" in script
        assert "https://nginx.org/download/nginx-${NGINX_VERSION}.tar.gz" in script

    def test_official_then_third_party_flags(self, registry: ModuleRegistry) -> None:
        """Test official flags precede third-party --add-module flags."""
        script = _script(registry, modules=["headers_more", "http_ssl_module", "http_v2_module"])

        ssl = script.index("--with-http_ssl_module")
        v2 = script.index("--with-http_v2_module")
        more = script.index("--add-module=/tmp/nginx-modules/headers-more-nginx-module")
        assert ssl < v2 < more

    def test_third_party_modules_are_cloned(self, registry: ModuleRegistry) -> None:
        """Test each third-party module gets a git clone into its checkout dir."""
        script = _script(registry, modules=["ngx_brotli", "headers_more"])

        assert "git clone --recursive -- https://github.com/google/ngx_brotli.git ngx_brotli" in script
        assert "headers-more-nginx-module.git headers-more-nginx-module" in script

    def test_official_only_selection_clones_nothing(self, registry: ModuleRegistry) -> None:
        """Test no git clone is emitted without third-party or custom modules."""
        script = _script(registry, modules=["http_ssl_module", "http_v2_module"])

        assert "git clone" not in script

    def test_parallel_jobs_default_uses_all_cores(self, registry: ModuleRegistry) -> None:
        """Test parallel_jobs=0 means one job per core."""
        assert "PARALLEL_JOBS=$(nproc)\n" in _script(registry)
        assert "PARALLEL_JOBS=8\n" in _script(registry, parallel_jobs=8)
        assert 'make -j"${PARALLEL_JOBS}"' in _script(registry)

    def test_optimization_and_debug_flags(self, registry: ModuleRegistry) -> None:
        """Test optimization level and debug flag reach configure."""
        script = _script(registry, optimization_level="O3", with_debug=True)

        assert "--with-debug" in script
        assert "--with-cc-opt='-O3 -fPIC -pipe'" in script
        assert "--with-compat" in script
        assert "--with-debug" not in _script(registry)

    def test_dependencies_include_module_packages(self, registry: ModuleRegistry) -> None:
        """Test module system packages are added to the base packages once."""
        modules = registry.resolve(["ngx_http_geoip2_module", "modsecurity_nginx"])

        packages = collect_dependencies(modules, registry.base_dependencies)

        assert packages[: len(registry.base_dependencies)] == list(registry.base_dependencies)
        assert "libmodsecurity-dev" in packages
        assert len(packages) == len(set(packages))

    def test_brotli_block_only_when_selected(self, registry: ModuleRegistry) -> None:
        """Test Brotli directives appear only when the module is built."""
        assert "brotli on;" in _script(registry, modules=["ngx_brotli"])
        assert "brotli on;" not in _script(registry, modules=["http_ssl_module"])

    def test_zstd_and_vts_blocks(self, registry: ModuleRegistry) -> None:
        """Test zstd and traffic status directives follow the selection."""
        script = _script(registry, modules=["zstd_nginx_module", "nginx_module_vts"])

        assert "zstd on;" in script
        assert "vhost_traffic_status_zone;" in script
        assert "vhost_traffic_status_zone;" not in _script(registry)

    def test_stream_block_only_with_stream(self, registry: ModuleRegistry) -> None:
        """Test the stream context is written only when stream is built."""
        assert "\nstream {" in _script(registry, modules=["stream"])
        assert "\nstream {" not in _script(registry, modules=["http_ssl_module"])

    def test_service_unit_uses_install_path(self, registry: ModuleRegistry) -> None:
        """Test the systemd unit points at the installed binary."""
        script = _script(registry, install_path="/srv/nginx")

        assert "ExecStart=/srv/nginx/sbin/nginx" in script
        assert "@INSTALL_PATH@" not in script

    def test_landing_page_shows_version(self, registry: ModuleRegistry) -> None:
        """Test the landing page carries the built version."""
        script = _script(registry, version="1.27.4")

        assert "nginx 1.27.4" in script
        assert "@VERSION@" not in script

    def test_progress_checkpoints_in_order(self, registry: ModuleRegistry) -> None:
        """Test every checkpoint is announced once, in increasing order."""
        script = _script(registry, modules=["http_ssl_module"])

        announced = []
        for line in script.splitlines():
            if line.startswith("log_progress "):
                _, value, _ = line.split(" ", 2)
                announced.append(int(value))

        assert announced == [c.value for c in Checkpoint]

    def test_progress_helper_emits_markers(self, registry: ModuleRegistry) -> None:
        """Test the log_progress helper prints lines the executor understands."""
        script = _script(registry)

        assert 'log_progress() { echo "[PROGRESS] $1 $2"; }' in script
        assert parse_progress_line('[PROGRESS] 45 "Configure complete"') == 45


@pytest.mark.unit
class TestCustomModules:
    """Test custom module sources are passed as arguments, never inlined."""

    URLS = [
        "https://github.com/example/first-module.git",
        "https://gitlab.com/example/second-module.git",
    ]

    def test_urls_not_in_script_body(self, registry: ModuleRegistry) -> None:
        """Test custom URLs never appear in the script text."""
        script = _script(registry, modules=["http_ssl_module"], custom_modules=self.URLS)

        for url in self.URLS:
            assert url not in script
        assert 'CUSTOM_MODULE_URLS=("$@")' in script

    def test_urls_read_from_positional_arguments(self, registry: ModuleRegistry) -> None:
        """Test each custom module is cloned from its positional argument."""
        script = _script(registry, custom_modules=self.URLS)

        assert 'git clone --recursive -- "${CUSTOM_MODULE_URLS[0]}" custom_0' in script
        assert 'git clone --recursive -- "${CUSTOM_MODULE_URLS[1]}" custom_1' in script
        assert "--add-module=/tmp/nginx-modules/custom_0" in script
        assert "--add-module=/tmp/nginx-modules/custom_1" in script

    def test_argument_count_checked(self, registry: ModuleRegistry) -> None:
        """Test the script refuses to run with the wrong number of URLs."""
        script = _script(registry, custom_modules=self.URLS)

        assert '-ne 2 ]; then' in script
        assert "exit 2" in script

    def test_custom_flags_come_last(self, registry: ModuleRegistry) -> None:
        """Test custom --add-module flags follow catalog module flags."""
        options = CompileOptions(version="1.26.3", modules=["ngx_brotli", "http_ssl_module"], custom_modules=self.URLS)

        flags = configure_flags(options, registry.resolve(options.modules))

        assert flags == [
            "--with-http_ssl_module",
            "--add-module=/tmp/nginx-modules/ngx_brotli",
            "--add-module=/tmp/nginx-modules/custom_0",
            "--add-module=/tmp/nginx-modules/custom_1",
        ]

    def test_duplicate_modules_ignored(self, registry: ModuleRegistry) -> None:
        """Test repeated modules produce a single flag and clone."""
        module = registry.get_module("ngx_brotli")
        options = CompileOptions(version="1.26.3", modules=["ngx_brotli"])

        script = generate_script(options, [module, module], registry.base_dependencies)

        assert script.count("--add-module=/tmp/nginx-modules/ngx_brotli") == 1
        assert script.count("git clone") == 1

"""Build script generation.

Contract:
- Inputs: CompileOptions and the selected catalog modules
- Outputs: Bash script text
- Side Effects: None (pure, deterministic)

Identical inputs always produce byte-identical scripts, so a preview shows
exactly what a submitted task will run. Custom module URLs are never
written into the script: the script reads them from its positional
arguments and the executor passes them as separate argv entries.
"""

import shlex
from collections.abc import Sequence

from ..models.catalog import Module
from ..models.compile import CompileOptions
from .progress import PROGRESS_TAG
from .progress import Checkpoint

DEFAULT_BASE_DEPENDENCIES = (
    "build-essential",
    "git",
    "wget",
    "curl",
    "libpcre3-dev",
    "zlib1g-dev",
    "libssl-dev",
)

MODULES_DIR = "/tmp/nginx-modules"
ALL_CORES = "$(nproc)"

_PREAMBLE = r"""set -e
set -o pipefail

RED='\033[0;31m'
GREEN='\033[0;32m'
YELLOW='\033[1;33m'
BLUE='\033[0;34m'
NC='\033[0m'

log_info() { echo -e "${BLUE}[INFO]${NC} $1"; }
log_success() { echo -e "${GREEN}[SUCCESS]${NC} $1"; }
log_warning() { echo -e "${YELLOW}[WARNING]${NC} $1"; }
log_error() { echo -e "${RED}[ERROR]${NC} $1" >&2; }
log_progress() { echo "%(tag)s $1 $2"; }
""".replace("%(tag)s", PROGRESS_TAG)

_ROOT_CHECK = r"""if [ "$(id -u)" != "0" ]; then
    log_error "This script must be run as root"
    exit 1
fi

log_info "Cleaning previous build directories..."
rm -rf "/tmp/nginx-${NGINX_VERSION}"
rm -rf "${MODULES_DIR}"
mkdir -p "${MODULES_DIR}"
"""

_DOWNLOAD_SOURCE = r"""log_info "Downloading nginx ${NGINX_VERSION} source..."
cd /tmp
if [ ! -f "nginx-${NGINX_VERSION}.tar.gz" ]; then
    wget -q "https://nginx.org/download/nginx-${NGINX_VERSION}.tar.gz"
fi
tar xzf "nginx-${NGINX_VERSION}.tar.gz"
"""

_CONFIGURE_PATHS = r"""./configure \
    --prefix="${INSTALL_PATH}" \
    --sbin-path="${INSTALL_PATH}/sbin/nginx" \
    --modules-path="${INSTALL_PATH}/modules" \
    --conf-path="${INSTALL_PATH}/conf/nginx.conf" \
    --error-log-path=/var/log/nginx/error.log \
    --http-log-path=/var/log/nginx/access.log \
    --pid-path=/var/run/nginx.pid \
    --lock-path=/var/run/nginx.lock \
    --http-client-body-temp-path=/var/cache/nginx/client_temp \
    --http-proxy-temp-path=/var/cache/nginx/proxy_temp \
    --http-fastcgi-temp-path=/var/cache/nginx/fastcgi_temp \
    --http-uwsgi-temp-path=/var/cache/nginx/uwsgi_temp \
    --http-scgi-temp-path=/var/cache/nginx/scgi_temp \
    --user=www-data \
    --group=www-data"""

_BUILD = r"""log_info "Running make with ${PARALLEL_JOBS} parallel jobs..."
make -j"${PARALLEL_JOBS}"

log_info "Running make install..."
make install
"""

_RUNTIME_DIRS = r"""log_info "Creating runtime directories..."
mkdir -p /var/cache/nginx/{client_temp,proxy_temp,fastcgi_temp,uwsgi_temp,scgi_temp}
mkdir -p /var/log/nginx
mkdir -p "${INSTALL_PATH}/conf/conf.d"
mkdir -p "${INSTALL_PATH}/conf/conf.d/stream"
mkdir -p "${INSTALL_PATH}/conf/sites-available"
mkdir -p "${INSTALL_PATH}/conf/sites-enabled"
"""

_SERVICE_UNIT = """log_info "Creating systemd service..."
cat > /etc/systemd/system/nginx.service << 'EOF'
[Unit]
Description=nginx HTTP server (compiled from source)
Documentation=https://nginx.org/en/docs/
After=network-online.target remote-fs.target nss-lookup.target
Wants=network-online.target

[Service]
Type=forking
PIDFile=/var/run/nginx.pid
ExecStartPre=@INSTALL_PATH@/sbin/nginx -t -q -g 'daemon on; master_process on;'
ExecStart=@INSTALL_PATH@/sbin/nginx -g 'daemon on; master_process on;'
ExecReload=/bin/kill -s HUP $MAINPID
ExecStop=/bin/kill -s QUIT $MAINPID
TimeoutStopSec=5
KillMode=mixed
PrivateTmp=true

[Install]
WantedBy=multi-user.target
EOF

log_info "Linking nginx binary..."
ln -sf "${INSTALL_PATH}/sbin/nginx" /usr/local/bin/nginx
ln -sf "${INSTALL_PATH}/sbin/nginx" /usr/sbin/nginx
"""

_CONF_HEAD = r"""log_info "Writing default configuration..."
cat > "${INSTALL_PATH}/conf/nginx.conf" << 'NGINX_CONF'
user www-data;
worker_processes auto;
worker_rlimit_nofile 65535;
error_log /var/log/nginx/error.log warn;
pid /var/run/nginx.pid;

events {
    worker_connections 65535;
    use epoll;
    multi_accept on;
    accept_mutex off;
}

http {
    include       mime.types;
    default_type  application/octet-stream;

    log_format main '$remote_addr - $remote_user [$time_local] "$request" '
                    '$status $body_bytes_sent "$http_referer" '
                    '"$http_user_agent" "$http_x_forwarded_for" '
                    '$request_time $upstream_response_time';

    access_log /var/log/nginx/access.log main buffer=16k flush=2m;

    sendfile on;
    tcp_nopush on;
    tcp_nodelay on;
    keepalive_timeout 65;
    keepalive_requests 10000;
    reset_timedout_connection on;

    client_body_buffer_size 16k;
    client_max_body_size 100m;
    client_header_buffer_size 1k;
    large_client_header_buffers 4 32k;

    client_body_timeout 60s;
    client_header_timeout 60s;
    send_timeout 60s;

    gzip on;
    gzip_vary on;
    gzip_proxied any;
    gzip_comp_level 5;
    gzip_min_length 256;
    gzip_buffers 16 8k;
    gzip_types
        text/plain
        text/css
        text/javascript
        text/xml
        application/json
        application/javascript
        application/xml
        application/xml+rss
        application/xhtml+xml
        application/x-javascript
        application/x-font-ttf
        application/vnd.ms-fontobject
        font/opentype
        image/svg+xml
        image/x-icon;
"""

_COMPRESSED_TYPES = """        text/plain
        text/css
        text/javascript
        text/xml
        application/json
        application/javascript
        application/xml
        application/xml+rss
        application/xhtml+xml
        image/svg+xml;
"""

_BROTLI_BLOCK = (
    """
    brotli on;
    brotli_comp_level 6;
    brotli_static on;
    brotli_types
"""
    + _COMPRESSED_TYPES
)

_ZSTD_BLOCK = (
    """
    zstd on;
    zstd_comp_level 3;
    zstd_min_length 256;
    zstd_types
"""
    + _COMPRESSED_TYPES
)

_VTS_BLOCK = """
    vhost_traffic_status_zone;
"""

_CONF_TAIL = r"""
    add_header X-Frame-Options "SAMEORIGIN" always;
    add_header X-Content-Type-Options "nosniff" always;
    add_header X-XSS-Protection "1; mode=block" always;

    server_tokens off;

    include conf.d/*.conf;
    include sites-enabled/*;

    server {
        listen 80 default_server;
        listen [::]:80 default_server;
        server_name _;

        location / {
            return 444;
        }
    }
}
"""

_STREAM_BLOCK = r"""
stream {
    log_format proxy '$remote_addr [$time_local] '
                     '$protocol $status $bytes_sent $bytes_received '
                     '$session_time "$upstream_addr" '
                     '"$upstream_bytes_sent" "$upstream_bytes_received" '
                     '"$upstream_connect_time"';

    access_log /var/log/nginx/stream-access.log proxy buffer=16k flush=2m;

    include conf.d/stream/*.conf;
}
"""

_LANDING_PAGE = """mkdir -p "${INSTALL_PATH}/html"
cat > "${INSTALL_PATH}/html/index.html" << 'HTML'
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>Welcome to nginx</title>
    <style>
        body {
            font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif;
            display: flex;
            justify-content: center;
            align-items: center;
            min-height: 100vh;
            margin: 0;
            background: #1f2933;
            color: #f5f7fa;
        }
        .container { text-align: center; padding: 40px; }
        h1 { font-size: 3em; margin-bottom: 10px; }
        .version {
            margin-top: 30px;
            padding: 10px 20px;
            background: rgba(255, 255, 255, 0.1);
            border-radius: 8px;
            font-family: monospace;
        }
    </style>
</head>
<body>
    <div class="container">
        <h1>nginx is running</h1>
        <p>Compiled from source.</p>
        <div class="version">nginx @VERSION@</div>
    </div>
</body>
</html>
HTML
"""

_START_SERVICE = r"""log_info "Starting nginx..."
systemctl daemon-reload
systemctl enable nginx
systemctl start nginx
"""

_VERIFY_AND_CLEANUP = r"""log_info "Verifying installation..."
"${INSTALL_PATH}/sbin/nginx" -V

log_info "Removing temporary files..."
rm -rf "/tmp/nginx-${NGINX_VERSION}"
rm -rf "${MODULES_DIR}"
"""

_SUMMARY = r"""log_success "========================================"
log_success "nginx ${NGINX_VERSION} compiled and installed"
log_success "========================================"
echo "Install path: ${INSTALL_PATH}"
echo "Config file:  ${INSTALL_PATH}/conf/nginx.conf"
echo "Logs:         /var/log/nginx/"
echo ""
echo "Common commands:"
echo "  systemctl start nginx    # start"
echo "  systemctl stop nginx     # stop"
echo "  systemctl reload nginx   # reload configuration"
echo "  nginx -t                 # test configuration"
echo "  nginx -V                 # show build flags"
"""


def dedupe_modules(modules: Sequence[Module]) -> list[Module]:
    """Drop repeated modules, keeping the first occurrence of each id."""
    seen: dict[str, Module] = {}
    for module in modules:
        seen.setdefault(module.id, module)
    return list(seen.values())


def collect_dependencies(modules: Sequence[Module], base_dependencies: Sequence[str]) -> list[str]:
    """Union of base and per-module system packages, first occurrence order."""
    packages = list(base_dependencies)
    for module in modules:
        packages.extend(module.dependencies)
    return list(dict.fromkeys(packages))


def partition_modules(modules: Sequence[Module]) -> tuple[list[Module], list[Module]]:
    """Split modules into official (compile flag only) and third-party (fetched)."""
    official = [m for m in modules if not m.third_party]
    third_party = [m for m in modules if m.third_party]
    return official, third_party


def configure_flags(options: CompileOptions, modules: Sequence[Module]) -> list[str]:
    """Module flags for configure: official, then third-party, then custom by position."""
    official, third_party = partition_modules(dedupe_modules(modules))
    flags = [m.flag for m in official]
    flags.extend(m.flag for m in third_party)
    flags.extend(f"--add-module={MODULES_DIR}/custom_{i}" for i in range(len(options.custom_modules)))
    return flags


def _progress(checkpoint: Checkpoint) -> str:
    return f'log_progress {checkpoint.value} "{checkpoint.label}"\n'


def _fetch_step(module: Module) -> str:
    args = ["git", "clone"]
    if module.submodules:
        args.append("--recursive")
    if module.branch:
        args.extend(["-b", shlex.quote(module.branch)])
    args.extend(["--", shlex.quote(module.repo or ""), shlex.quote(module.checkout_dir)])
    return f'\n# {module.name} ({module.checkout_dir})\nlog_info "Fetching {module.name}..."\n{" ".join(args)}\n'


def _custom_fetch_step(index: int) -> str:
    return (
        f"\n# Custom module {index + 1}\n"
        f'log_info "Fetching custom module {index + 1}..."\n'
        f'git clone --recursive -- "${{CUSTOM_MODULE_URLS[{index}]}}" custom_{index}\n'
    )


def _runtime_config(selected: set[str]) -> str:
    parts = [_CONF_HEAD]
    if "ngx_brotli" in selected:
        parts.append(_BROTLI_BLOCK)
    if "zstd_nginx_module" in selected:
        parts.append(_ZSTD_BLOCK)
    if "nginx_module_vts" in selected:
        parts.append(_VTS_BLOCK)
    parts.append(_CONF_TAIL)
    if "stream" in selected:
        parts.append(_STREAM_BLOCK)
    parts.append("NGINX_CONF\n")
    return "".join(parts)


def generate_script(
    options: CompileOptions,
    modules: Sequence[Module],
    base_dependencies: Sequence[str] = DEFAULT_BASE_DEPENDENCIES,
) -> str:
    """Generate the bash build script for a selection.

    The script installs build dependencies, downloads and unpacks the
    requested source version, fetches every third-party and custom module,
    configures, builds and installs, then sets up runtime directories, a
    systemd unit, a default configuration and landing page, starts the
    service, verifies the binary and cleans up.

    Custom module URLs are read from the script's positional arguments, in
    the order of options.custom_modules, and the script refuses to run when
    the argument count does not match.

    Args:
        options: Validated build options
        modules: Selected catalog modules (duplicates are ignored)
        base_dependencies: System packages every build needs

    Returns:
        Script text
    """
    modules = dedupe_modules(modules)
    selected = {m.id for m in modules}
    _, third_party = partition_modules(modules)
    custom_count = len(options.custom_modules)
    jobs = str(options.parallel_jobs) if options.parallel_jobs else ALL_CORES

    packages = " ".join(shlex.quote(p) for p in collect_dependencies(modules, base_dependencies))

    flag_lines = configure_flags(options, modules)
    if options.with_debug:
        flag_lines.append("--with-debug")
    flag_lines.extend(["--with-compat", f"--with-cc-opt='-{options.optimization_level} -fPIC -pipe'"])

    out: list[str] = []
    out.append(
        "#!/bin/bash\n"
        "#############################################\n"
        "# nginx source build\n"
        f"# Version: {options.version}\n"
        f"# Modules: {len(modules)} catalog, {custom_count} custom\n"
        "#############################################\n\n"
    )
    out.append(_PREAMBLE)
    out.append(
        "\n"
        f"NGINX_VERSION={shlex.quote(options.version)}\n"
        f"INSTALL_PATH={shlex.quote(options.install_path)}\n"
        f'MODULES_DIR="{MODULES_DIR}"\n'
        f"PARALLEL_JOBS={jobs}\n"
        'CUSTOM_MODULE_URLS=("$@")\n'
        "\n"
        f'if [ "${{#CUSTOM_MODULE_URLS[@]}}" -ne {custom_count} ]; then\n'
        f'    log_error "Expected {custom_count} custom module URL argument(s), got ${{#CUSTOM_MODULE_URLS[@]}}"\n'
        "    exit 2\n"
        "fi\n\n"
    )
    out.append(_ROOT_CHECK)

    out.append("\n")
    out.append(_progress(Checkpoint.DEPENDENCIES))
    out.append(
        'log_info "Installing build dependencies..."\n'
        "export DEBIAN_FRONTEND=noninteractive\n"
        "apt-get update\n"
        f"apt-get install -y {packages}\n\n"
    )

    out.append(_DOWNLOAD_SOURCE)
    out.append(_progress(Checkpoint.SOURCE_DOWNLOADED))

    out.append('\nlog_info "Fetching third-party modules..."\ncd "${MODULES_DIR}"\n')
    for module in third_party:
        out.append(_fetch_step(module))
    for index in range(custom_count):
        out.append(_custom_fetch_step(index))
    out.append(_progress(Checkpoint.MODULES_FETCHED))

    out.append('\nlog_info "Configuring nginx..."\ncd "/tmp/nginx-${NGINX_VERSION}"\n\n')
    out.append(_CONFIGURE_PATHS)
    for flag in flag_lines:
        out.append(f" \\\n    {flag}")
    out.append("\n")
    out.append(_progress(Checkpoint.CONFIGURED))

    out.append("\n")
    out.append(_progress(Checkpoint.BUILD_STARTED))
    out.append(_BUILD)
    out.append(_progress(Checkpoint.INSTALLED))

    out.append("\n")
    out.append(_RUNTIME_DIRS)
    out.append("\n")
    out.append(_SERVICE_UNIT.replace("@INSTALL_PATH@", options.install_path))
    out.append(_progress(Checkpoint.SERVICE_UNIT))

    out.append("\n")
    out.append(_runtime_config(selected))
    out.append("\n")
    out.append(_LANDING_PAGE.replace("@VERSION@", options.version))
    out.append(_progress(Checkpoint.RUNTIME_CONFIG))

    out.append("\n")
    out.append(_START_SERVICE)
    out.append(_progress(Checkpoint.SERVICE_STARTED))

    out.append("\n")
    out.append(_VERIFY_AND_CLEANUP)
    out.append("\n")
    out.append(_progress(Checkpoint.FINISHED))
    out.append(_SUMMARY)

    return "".join(out)

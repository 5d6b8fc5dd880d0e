"""Toolchain availability checks.

The supervisor assumes the interpreters and compilers it invokes are on
``PATH``.  This module lets a client find out beforehand, and tells the user
how to install whatever is missing on their platform.
"""

from __future__ import annotations

import shutil
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from .executor import PIPELINES
from .models import Language, RuntimeStatus

OS_RELEASE = Path("/etc/os-release")


@dataclass(frozen=True)
class RuntimeInfo:
    """An external executable a pipeline depends on."""

    name: str
    command: str
    download_url: str


NODE = RuntimeInfo("Node.js", "node", "https://nodejs.org/")
NPX = RuntimeInfo("npx (Node.js)", "npx", "https://nodejs.org/")
PYTHON = RuntimeInfo("Python", "python3", "https://www.python.org/downloads/")
RUST = RuntimeInfo("Rust", "rustc", "https://rustup.rs/")
JAVA = RuntimeInfo("Java", "java", "https://adoptium.net/")
JAVAC = RuntimeInfo("Java Compiler", "javac", "https://adoptium.net/")

RUNTIMES: Dict[str, RuntimeInfo] = {info.command: info for info in (NODE, NPX, PYTHON, RUST, JAVA, JAVAC)}


class OSFamily(str, Enum):
    MACOS = "macos"
    LINUX = "linux"
    WINDOWS = "windows"
    UNKNOWN = "unknown"


class LinuxDistro(str, Enum):
    DEBIAN = "debian"  # apt: Ubuntu, Debian, Pop!_OS, Mint
    FEDORA = "fedora"  # dnf: Fedora, RHEL, CentOS
    ARCH = "arch"  # pacman: Arch, Manjaro, EndeavourOS
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Platform:
    family: OSFamily
    has_homebrew: bool = False
    has_winget: bool = False
    distro: LinuxDistro = LinuxDistro.UNKNOWN


def command_exists(command: str) -> bool:
    return shutil.which(command) is not None


def detect_linux_distro(os_release: Path = OS_RELEASE) -> LinuxDistro:
    if command_exists("apt"):
        return LinuxDistro.DEBIAN
    if command_exists("dnf"):
        return LinuxDistro.FEDORA
    if command_exists("pacman"):
        return LinuxDistro.ARCH
    try:
        content = os_release.read_text(encoding="utf-8")
    except OSError:
        return LinuxDistro.UNKNOWN
    return distro_from_os_release(content)


def distro_from_os_release(content: str) -> LinuxDistro:
    content = content.lower()
    if any(word in content for word in ("ubuntu", "debian", "pop", "mint")):
        return LinuxDistro.DEBIAN
    if any(word in content for word in ("fedora", "rhel", "centos")):
        return LinuxDistro.FEDORA
    if any(word in content for word in ("arch", "manjaro", "endeavour", "cachyos")):
        return LinuxDistro.ARCH
    return LinuxDistro.UNKNOWN


def detect_platform() -> Platform:
    """Detect the current OS and the package managers it offers."""
    if sys.platform == "darwin":
        return Platform(OSFamily.MACOS, has_homebrew=command_exists("brew"))
    if sys.platform.startswith("linux"):
        return Platform(OSFamily.LINUX, distro=detect_linux_distro())
    if sys.platform == "win32":
        return Platform(OSFamily.WINDOWS, has_winget=command_exists("winget"))
    return Platform(OSFamily.UNKNOWN)


_LINUX_INSTALL: Dict[str, Dict[LinuxDistro, str]] = {
    "node": {
        LinuxDistro.DEBIAN: "sudo apt install nodejs npm",
        LinuxDistro.FEDORA: "sudo dnf install nodejs npm",
        LinuxDistro.ARCH: "sudo pacman -S nodejs npm",
    },
    "python3": {
        LinuxDistro.DEBIAN: "sudo apt install python3",
        LinuxDistro.FEDORA: "sudo dnf install python3",
        LinuxDistro.ARCH: "sudo pacman -S python",
    },
    "java": {
        LinuxDistro.DEBIAN: "sudo apt install default-jdk",
        LinuxDistro.FEDORA: "sudo dnf install java-latest-openjdk-devel",
        LinuxDistro.ARCH: "sudo pacman -S jdk-openjdk",
    },
}

_BREW_INSTALL = {
    "node": "brew install node",
    "python3": "brew install python",
    "rustc": "brew install rust",
    "java": "brew install openjdk",
}

_WINGET_INSTALL = {
    "node": "winget install OpenJS.NodeJS",
    "python3": "winget install Python.Python.3.12",
    "rustc": "winget install Rustlang.Rustup",
    "java": "winget install EclipseAdoptium.Temurin.21.JDK",
}

_RUSTUP = "curl --proto '=https' --tlsv1.2 -sSf https://sh.rustup.rs | sh"


def install_command(runtime: RuntimeInfo, platform: Platform) -> Optional[str]:
    """Return the package-manager command that installs ``runtime``, if known."""
    # npx ships with node, javac with the JDK.
    key = {"npx": "node", "javac": "java"}.get(runtime.command, runtime.command)
    if platform.family is OSFamily.MACOS:
        return _BREW_INSTALL.get(key) if platform.has_homebrew else None
    if platform.family is OSFamily.WINDOWS:
        return _WINGET_INSTALL.get(key) if platform.has_winget else None
    if platform.family is OSFamily.LINUX:
        if key == "rustc":
            if platform.distro is LinuxDistro.ARCH:
                return "sudo pacman -S rust"
            return _RUSTUP
        return _LINUX_INSTALL.get(key, {}).get(platform.distro)
    return None


def format_install_hint(runtime: RuntimeInfo, install_cmd: Optional[str]) -> str:
    hint = f"Error: {runtime.name} is not installed\n\n"
    if install_cmd:
        hint += f"To install {runtime.name} on your system:\n"
        hint += f"  {install_cmd}\n\n"
    if runtime.download_url:
        hint += f"Or download from: {runtime.download_url}\n"
    return hint


def runtime_for(command: str) -> RuntimeInfo:
    return RUNTIMES.get(command) or RuntimeInfo(command, command, "")


def check_runtime(runtime: RuntimeInfo, platform: Optional[Platform] = None) -> Optional[str]:
    """Return an install hint if ``runtime`` is missing, else ``None``."""
    if command_exists(runtime.command):
        return None
    if platform is None:
        platform = detect_platform()
    return format_install_hint(runtime, install_command(runtime, platform))


def check_commands(language: Language, commands: List[str], platform: Optional[Platform] = None) -> RuntimeStatus:
    """Report whether every command in ``commands`` is on ``PATH``.

    The hint covers the first missing command; installing it usually brings
    the rest of the toolchain along.
    """
    missing = [command for command in commands if not command_exists(command)]
    if not missing:
        return RuntimeStatus(language=language, available=True)
    return RuntimeStatus(
        language=language,
        available=False,
        missing=missing,
        install_hint=check_runtime(runtime_for(missing[0]), platform),
    )


def check_language(language: Language, platform: Optional[Platform] = None) -> RuntimeStatus:
    """Check the toolchain behind ``language``'s pipeline."""
    return check_commands(language, list(PIPELINES[language].required_commands), platform)

"""Package definitions, taps, dependency graph and package manager queries."""

from formula_test_bot.packages.graph import PackageGraph
from formula_test_bot.packages.manager import InstalledPackage, PackageManager, PackageManagerError
from formula_test_bot.packages.model import (
    BottleSpec,
    Dependency,
    DependencyTag,
    Package,
    Platform,
    Requirement,
)
from formula_test_bot.packages.tap import Formulary, Tap, load_definition, parse_tap_name

__all__ = [
    "BottleSpec",
    "Dependency",
    "DependencyTag",
    "Formulary",
    "InstalledPackage",
    "Package",
    "PackageGraph",
    "PackageManager",
    "PackageManagerError",
    "Platform",
    "Requirement",
    "Tap",
    "load_definition",
    "parse_tap_name",
]

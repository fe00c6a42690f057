"""
trunk-swift — Build / Watch / Serve for Xcode Projects

This is the top-level package for the trunk-swift command-line tool.
It drives the native Xcode toolchain (xcodebuild, xcrun simctl) to give
an iOS project a Trunk-like workflow: build once, rebuild on every save,
and boot a simulator to serve the result.

The version string below is the single source of truth for the tool's
version number, referenced by pyproject.toml and the help output.
"""

__version__ = "0.1.0"

"""mpm_engine — HTTP and command-line front ends for mpm_core."""

__version__ = "0.1.2"

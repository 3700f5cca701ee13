"""Pipeline orchestration and output persistence."""

from mbg.pipeline.runner import MbgModelRunner
from mbg.pipeline.outputs import setup_output_directories, write_outputs

__all__ = ["MbgModelRunner", "setup_output_directories", "write_outputs"]

"""tar.gz extraction helpers."""

from nodectl.archive.targz import concat_tar_gz, extract_file_from_tar_gz, extract_tar_gz

__all__ = ["concat_tar_gz", "extract_file_from_tar_gz", "extract_tar_gz"]

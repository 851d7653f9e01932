import pathlib as pl

FileType = str | pl.Path
# Environment passed to child scripts
EnvType = dict[str, str]
# List of `KEY=VALUE` strings, as given on command line
EnvListType = list[str] | tuple[str, ...]

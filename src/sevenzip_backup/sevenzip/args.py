"""Build 7-Zip command lines from an effective job configuration."""

from ..config.schema import EffectiveJobConfig

SFX_MODULE_FILES = {
    "Console": "7zCon.sfx",
    "GUI": "7z.sfx",
    "Installer": "7zSD.sfx",
}


def build_archive_args(
    effective: EffectiveJobConfig,
    target_path: str,
    source_paths: list[str],
    has_password: bool = False,
) -> list[str]:
    """Arguments for ``7z a``, without the executable and password switch."""
    args = ["a"]
    args += [
        value
        for value in (
            effective.archive_type,
            effective.compression_level,
            effective.compression_method,
            effective.dictionary_size,
            effective.word_size,
            effective.solid_block_size,
            effective.threads_setting,
        )
        if value
    ]
    if effective.compress_open_files:
        args.append("-ssw")
    if has_password and effective.archive_type.lower() == "-t7z":
        args.append("-mhe=on")
    if effective.is_split:
        args.append(f"-v{effective.split_volume_size}")
    elif effective.create_sfx:
        args.append(f"-sfx{SFX_MODULE_FILES[effective.sfx_module]}")
    if effective.temp_directory:
        args.append(f"-w{effective.temp_directory}")
    if effective.include_list_file:
        args.append(f"-i@{effective.include_list_file}")
    if effective.exclude_list_file:
        args.append(f"-x@{effective.exclude_list_file}")
    args += ["-y", target_path]
    args += list(source_paths)
    return args


def build_test_args(archive_path: str) -> list[str]:
    return ["t", archive_path, "-y"]


def build_list_args(archive_path: str) -> list[str]:
    return ["l", "-slt", archive_path]

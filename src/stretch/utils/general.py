from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Secret, SecretBytes, SecretStr
from pydantic_core import PydanticUndefinedType
from pydantic_settings import BaseSettings
from ruamel.yaml import YAML
from ruamel.yaml.comments import CommentedMap

yaml = YAML()

YamlSerializable = (
    str | int | float | bool | None | list[Any] | dict[str, Any] | CommentedMap
)


class CommentedSettings(BaseSettings):
    """Pydantic BaseSettings with support for yaml output with comment."""

    @staticmethod
    def to_yaml_value(obj: Any) -> YamlSerializable:
        """Recursively ensure an object is able to be dumped to yaml."""
        if isinstance(obj, BaseModel):
            return CommentedSettings.to_commented(obj)
        if isinstance(obj, Secret | SecretStr | SecretBytes):
            return CommentedSettings.to_yaml_value(obj.get_secret_value())  # pyright:ignore[reportUnknownMemberType] Secrets use unknowns
        if isinstance(obj, None | bool | int | float):
            return obj
        if isinstance(obj, str) or not isinstance(obj, Iterable):
            return str(obj)
        if isinstance(obj, Mapping):
            return {
                str(key): CommentedSettings.to_yaml_value(value)  # pyright:ignore[reportUnknownArgumentType]
                for key, value in obj.items()  # pyright:ignore[reportUnknownVariableType]
            }
        return [CommentedSettings.to_yaml_value(item) for item in obj]  # pyright:ignore[reportUnknownVariableType]

    @staticmethod
    def to_commented(obj: BaseModel | type[BaseModel]) -> CommentedMap:
        """Populate a commented mapping from a model, using field descriptions as comments."""
        commented = CommentedMap()
        model_cls = type(obj) if isinstance(obj, BaseModel) else obj

        for field, info in model_cls.model_fields.items():
            if isinstance(obj, BaseModel):
                value = getattr(obj, field)
            else:
                value = (
                    info.default_factory()  # pyright:ignore[reportCallIssue] No settings factory takes validated data
                    if info.default_factory
                    else info.default
                )
                if isinstance(value, PydanticUndefinedType):
                    continue

            commented[field] = CommentedSettings.to_yaml_value(value)
            if info.description:
                commented.yaml_add_eol_comment(comment=info.description, key=field)  # pyright:ignore[reportUnknownMemberType]

        return commented

    @classmethod
    def write_default(cls, path: Path) -> None:
        """Write the settings defaults to a given path."""
        start_comment = "\n".join(
            [
                "Default stretch configuration values.",
                "Copy the values you need into config/config.yaml to override them.",
            ]
        )
        commented = CommentedSettings.to_commented(cls)

        commented.yaml_set_start_comment(start_comment)  # pyright:ignore[reportUnknownMemberType] ruamel uses unknowns
        path.parent.mkdir(parents=True, exist_ok=True)
        yaml.dump(commented, path)  # pyright:ignore[reportUnknownMemberType] ruamel uses unknowns

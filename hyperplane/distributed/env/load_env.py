import os
from typing import Callable, Dict, Iterable, Tuple, TypeVar

from dotenv import dotenv_values
from pydantic import BaseModel

from .env import Env, PrimaryType

T = TypeVar("T", bound=BaseModel)


def load_env(
    default: type[Env] = Env,
    env_file: str | None = None,
    override: T | None = None,
) -> T:
    """
    Build ``default`` from HYPERPLANE_* process variables, then the
    ``.env`` file, then fields explicitly set on ``override``. Later
    sources win. Unknown names in either source are ignored.
    """
    converters = default.types_map()

    if env_file is None:
        env_file = ".env"

    values: Dict[str, PrimaryType] = dict(
        _convert(os.environ.items(), converters)
    )

    if os.path.exists(env_file):
        values.update(
            _convert(dotenv_values(dotenv_path=env_file).items(), converters)
        )

    if override is None:
        return default(**values)

    values.update(override.model_dump(exclude_unset=True, exclude_none=True))

    return type(override)(**values)


def _convert(
    items: Iterable[Tuple[str, str | None]],
    converters: Dict[str, Callable[[str], PrimaryType]],
):
    for name, raw in items:
        convert = converters.get(name)
        if convert and raw:
            yield name, convert(raw)

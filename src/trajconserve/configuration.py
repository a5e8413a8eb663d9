import dataclasses
import inspect
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
    Tuple,
    Type,
    get_type_hints,
)

__all__ = ["create_dataclass_from_callable", "infer_type_from_default"]


def infer_type_from_default(value: Any) -> Type:
    """
    Infers or imputes a type from the default value of a parameter.

    Examples:
        >>> infer_type_from_default(3)
        <class 'int'>
        >>> infer_type_from_default(None)
        typing.Optional[typing.Any]
    """
    if value is None:
        return Optional[Any]
    elif value is inspect.Parameter.empty:
        return Any
    else:
        return type(value)


def create_dataclass_from_callable(
    callable_obj: Callable,
    overrides: Optional[Dict[str, Tuple[Type, Any]]] = None,
    exclude: Sequence[str] = (),
) -> List[Tuple[str, Type, Any]]:
    """
    Creates the fields of a dataclass from a `Callable` that includes all
    parameters of the callable as typed fields with default values taken from
    the signature. Parameters whose annotations cannot be serialized, such as
    paths or in-memory objects, should be given a serializable type and
    default in `overrides` or left out with `exclude`.

    Args:
        callable_obj (Callable): The callable object to create a dataclass
            from.
        overrides (Optional[Dict[str, Tuple[Type, Any]]]): Dictionary to
            override inferred types and default values. Each dict value is a
            tuple (Type, default_value).
        exclude (Sequence[str]): Parameters to leave out.

    Returns:
        Fields that can be used to construct a new dataclass type that
        represents the interface of the callable.

    Examples:
        >>> from mashumaro.mixins.json import DataClassJSONMixin
        >>> def task(path, n_bins: int = 100, seed: Optional[int] = None):
        ...     pass
        >>> fields = create_dataclass_from_callable(task, {"path": (str, "x.h5")})
        >>> TaskInterface = dataclasses.make_dataclass(
        ...     "TaskInterface", fields, bases=(DataClassJSONMixin,)
        ... )
        >>> TaskInterface.from_json('{"n_bins": 10}')
        TaskInterface(path='x.h5', n_bins=10, seed=None)
    """
    if inspect.isclass(callable_obj):
        func = callable_obj.__init__
    else:
        func = callable_obj

    signature = inspect.signature(func)
    type_hints = get_type_hints(func)

    fields = []
    for name, param in signature.parameters.items():
        if name == "self" or name in exclude:
            continue

        if overrides and name in overrides:
            field_type, default_value = overrides[name]
        else:
            inferred_type = infer_type_from_default(param.default)
            field_type = type_hints.get(name, inferred_type)
            default_value = (
                param.default
                if param.default is not inspect.Parameter.empty
                else dataclasses.field(default_factory=lambda: None)
            )

        fields.append((name, field_type, default_value))

    return fields

from sqlalchemy import String, Text, orm

from typing_extensions import Annotated

str32 = Annotated[str, 32]
str512 = Annotated[str, 512]
token = Annotated[str, "token"]


class Base(orm.DeclarativeBase):
    type_annotation_map = {
        str32: String(32),
        str512: String(512),
        token: Text(),
    }

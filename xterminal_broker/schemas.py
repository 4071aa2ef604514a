from pydantic import BaseModel, Field, field_validator

# Form fields are limited in UTF-8 bytes, not characters
FORM_FIELD_MAX_LENGTH: int = 49


class LoginForm(BaseModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)

    @field_validator("username", "password", mode="before")
    @classmethod
    def form_value_is_text(cls, v, info):
        if not isinstance(v, str):
            raise ValueError(f"{info.field_name} must be a plain form value")
        return v

    @field_validator("username", "password")
    @classmethod
    def fits_form_buffer(cls, v, info):
        if len(v.encode("utf-8")) > FORM_FIELD_MAX_LENGTH:
            raise ValueError(f"{info.field_name} must be at most {FORM_FIELD_MAX_LENGTH} bytes")
        return v

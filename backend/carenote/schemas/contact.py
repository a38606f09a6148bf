"""Public contact form schema."""

from typing import Annotated

from pydantic import BaseModel, EmailStr, StringConstraints

# Lengths are checked after surrounding whitespace is stripped
ContactName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=2, max_length=100)]
ContactSubject = Annotated[str, StringConstraints(strip_whitespace=True, min_length=3, max_length=200)]
ContactBody = Annotated[str, StringConstraints(strip_whitespace=True, min_length=10, max_length=5000)]


class ContactRequest(BaseModel):
    name: ContactName
    email: EmailStr
    subject: ContactSubject
    message: ContactBody

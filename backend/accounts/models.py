from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """Staff, manager and vendor accounts. Bidders never log in; they are
    identified by email and alias only."""

    email = models.EmailField("email address", unique=True)

    def __str__(self) -> str:
        return self.email or self.username

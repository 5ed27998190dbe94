from django.apps import AppConfig


class IamConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "chiro_core.iam"

    def ready(self) -> None:
        # registers the OpenAPI auth extension; imported here so app loading doesn't break tooling
        from chiro_core.iam import openapi  # noqa: F401

    def ready(self):
        # registers the drf-spectacular extension for CookieOrHeaderJWTAuthentication
        from chiro_core.iam import openapi  # noqa: F401

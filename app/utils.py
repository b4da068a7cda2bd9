from flask_wtf import FlaskForm

from app.errors import form_error


class ApiForm(FlaskForm):
    """JSON-fed form; the API is session-authenticated and not rendered, so no CSRF field."""

    class Meta:
        csrf = False


def validated(form):
    """Validate a submitted form or raise ValidationFailed with the first error."""
    if not form.validate_on_submit():
        raise form_error(form)
    return form

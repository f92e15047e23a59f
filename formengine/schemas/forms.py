"""Schemas for the form definition: fields, steps, conditional logic and settings."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from formengine.db.enums import FormStatus


FieldType = Literal[
    "short_text",
    "long_text",
    "email",
    "phone",
    "url",
    "number",
    "currency",
    "date",
    "datetime",
    "time",
    "date_range",
    "dropdown",
    "radio",
    "checkbox",
    "multi_select",
    "file_upload",
    "image_upload",
    "rating",
    "scale",
    "matrix",
    "location",
    "address",
    "rich_text",
    "section_header",
    "divider",
]

TEXT_FIELD_TYPES = frozenset({"short_text", "long_text", "email", "phone", "url"})
NUMBER_FIELD_TYPES = frozenset({"number", "currency"})
DATE_FIELD_TYPES = frozenset({"date", "datetime", "time", "date_range"})
SELECTION_FIELD_TYPES = frozenset({"dropdown", "radio", "checkbox", "multi_select"})
FILE_FIELD_TYPES = frozenset({"file_upload", "image_upload"})
DISPLAY_FIELD_TYPES = frozenset({"section_header", "divider"})

# Fields that never hold an answer and cannot be imported from a spreadsheet.
NON_IMPORTABLE_FIELD_TYPES = FILE_FIELD_TYPES | DISPLAY_FIELD_TYPES

ValidationRuleType = Literal[
    "required",
    "min_length",
    "max_length",
    "min_value",
    "max_value",
    "regex",
    "email_format",
    "phone_format",
    "url_format",
    "custom",
]

ConditionalOperator = Literal[
    "equals",
    "not_equals",
    "contains",
    "not_contains",
    "greater_than",
    "less_than",
    "is_empty",
    "is_not_empty",
]

ConditionalAction = Literal["show", "hide", "require", "skip_to"]


def _short_id() -> str:
    return uuid.uuid4().hex[:12]


class ValidationRule(BaseModel):
    type: ValidationRuleType
    value: Any = None
    message: str = ""


class FieldOption(BaseModel):
    id: str = Field(default_factory=_short_id)
    label: str
    value: str
    color: str | None = None
    icon: str | None = None


class FieldLayout(BaseModel):
    width: Literal["full", "half", "third", "quarter", "auto"] = "full"
    columns: int | None = None
    row: int | None = None
    col: int | None = None


class BaseField(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1, max_length=100)
    label: str = ""
    description: str | None = None
    placeholder: str | None = None
    required: bool = False
    validation: list[ValidationRule] = Field(default_factory=list)
    layout: FieldLayout = Field(default_factory=FieldLayout)
    order: int = 0


class TextField(BaseField):
    type: Literal["short_text", "long_text", "email", "phone", "url"]
    min_length: int | None = Field(None, ge=0)
    max_length: int | None = Field(None, ge=0)


class NumberField(BaseField):
    type: Literal["number", "currency"]
    min: float | None = None
    max: float | None = None
    step: float | None = None
    currency_symbol: str | None = None


class DateField(BaseField):
    type: Literal["date", "datetime", "time", "date_range"]
    min_date: str | None = None
    max_date: str | None = None
    format: str | None = None


class SelectionField(BaseField):
    type: Literal["dropdown", "radio", "checkbox", "multi_select"]
    options: list[FieldOption] = Field(default_factory=list)
    allow_other: bool = False
    multiple_select: bool = False


class FileUploadField(BaseField):
    type: Literal["file_upload", "image_upload"]
    max_size: float = 10  # MB
    allowed_types: list[str] = Field(default_factory=list)
    max_files: int = Field(1, ge=1)


class RatingField(BaseField):
    type: Literal["rating"]
    max_rating: int = Field(5, ge=1)
    icon: Literal["star", "heart", "thumb", "number"] | None = "star"


class ScaleField(BaseField):
    type: Literal["scale"]
    min: int = 1
    max: int = 10
    min_label: str | None = None
    max_label: str | None = None
    step: int = 1


class MatrixField(BaseField):
    type: Literal["matrix"]
    rows: list[FieldOption] = Field(default_factory=list)
    columns: list[FieldOption] = Field(default_factory=list)
    allow_multiple: bool = False


class LocationField(BaseField):
    type: Literal["location"]
    enable_map: bool = False
    enable_geolocation: bool = False


class AddressComponents(BaseModel):
    street: bool = True
    city: bool = True
    state: bool = True
    zip_code: bool = True
    country: bool = True


class AddressField(BaseField):
    type: Literal["address"]
    components: AddressComponents = Field(default_factory=AddressComponents)


class RichTextField(BaseField):
    type: Literal["rich_text"]
    toolbar: list[str] = Field(default_factory=lambda: ["bold", "italic", "link", "list"])


class SectionHeaderField(BaseField):
    type: Literal["section_header"]
    size: Literal["small", "medium", "large"] = "medium"


class DividerField(BaseField):
    type: Literal["divider"]
    style: Literal["solid", "dashed", "dotted"] = "solid"


FormField = Annotated[
    Union[
        TextField,
        NumberField,
        DateField,
        SelectionField,
        FileUploadField,
        RatingField,
        ScaleField,
        MatrixField,
        LocationField,
        AddressField,
        RichTextField,
        SectionHeaderField,
        DividerField,
    ],
    Field(discriminator="type"),
]

form_field_adapter: TypeAdapter[FormField] = TypeAdapter(FormField)


class ConditionalCondition(BaseModel):
    field_id: str = Field(..., min_length=1)
    operator: ConditionalOperator
    value: Any = None


class ConditionalRule(BaseModel):
    id: str = Field(default_factory=_short_id)
    conditions: list[ConditionalCondition] = Field(default_factory=list)
    logic_operator: Literal["AND", "OR"] = "AND"
    action: ConditionalAction
    target_field_id: str
    skip_to_step_id: str | None = None


class FormStep(BaseModel):
    id: str = Field(default_factory=_short_id)
    title: str = ""
    description: str | None = None
    fields: list[str] = Field(default_factory=list)
    order: int = 0


class FormSettings(BaseModel):
    is_public: bool = False
    allow_anonymous: bool = False
    require_login: bool = True
    allow_edit: bool = False
    allow_multiple_submissions: bool = False
    show_progress_bar: bool = True
    show_question_numbers: bool = True
    shuffle_questions: bool = False
    confirmation_message: str = "Thank you for your submission!"
    redirect_url: str | None = None
    enable_notifications: bool = False
    notification_emails: list[str] = Field(default_factory=list)
    enable_auto_save: bool = True
    auto_save_interval: int = Field(30, ge=1)  # seconds
    collect_email: bool = True
    collect_ip_address: bool = False
    enable_recaptcha: bool = False


class FormTheme(BaseModel):
    primary_color: str = "#1e293b"
    background_color: str = "#ffffff"
    font_family: str = "Inter"
    font_size: str = "16px"
    button_style: Literal["rounded", "square", "pill"] = "rounded"
    show_progress_bar: bool = True
    logo_url: str | None = None


class FormAccessControl(BaseModel):
    visibility: Literal["public", "private", "team"] = "private"
    password: str | None = None
    allowed_domains: list[str] | None = None
    expires_at: datetime | None = None
    max_submissions: int | None = Field(None, ge=0)


class FormMetadata(BaseModel):
    total_fields: int = 0
    total_steps: int = 1
    estimated_time: int = 5  # minutes
    response_count: int = 0
    last_submitted_at: datetime | None = None


class FormDefinition(BaseModel):
    """In-memory form with its typed field union."""

    id: str | None = None
    company_id: str
    name: str
    description: str | None = None
    status: FormStatus = FormStatus.DRAFT
    version: int = 1
    is_template: bool = False
    template_category: str | None = None

    fields: list[FormField] = Field(default_factory=list)
    steps: list[FormStep] = Field(default_factory=list)
    conditional_logic: list[ConditionalRule] = Field(default_factory=list)

    settings: FormSettings = Field(default_factory=FormSettings)
    theme: FormTheme = Field(default_factory=FormTheme)
    access_control: FormAccessControl = Field(default_factory=FormAccessControl)
    metadata: FormMetadata = Field(default_factory=FormMetadata)

    created_by: str | None = None
    updated_by: str | None = None
    published_at: datetime | None = None

    def get_field(self, field_id: str) -> FormField | None:
        for field in self.fields:
            if field.id == field_id:
                return field
        return None

    @property
    def fields_by_id(self) -> dict[str, FormField]:
        return {field.id: field for field in self.fields}


# =============================================================================
# API request / response models
# =============================================================================


class FormCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    description: str | None = None
    fields: list[FormField] = Field(default_factory=list)
    steps: list[FormStep] | None = None


class FormUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=150)
    description: str | None = None
    fields: list[FormField] | None = None
    steps: list[FormStep] | None = None
    conditional_logic: list[ConditionalRule] | None = None
    settings: FormSettings | None = None
    theme: FormTheme | None = None
    access_control: FormAccessControl | None = None


class FormSummary(BaseModel):
    id: str
    name: str
    status: FormStatus
    version: int
    total_fields: int
    response_count: int

from django.contrib import admin

from .models import ValidationRule


@admin.register(ValidationRule)
class ValidationRuleAdmin(admin.ModelAdmin):
    list_display = (
        "code",
        "enabled",
        "scope",
        "field_name",
        "rule_type",
        "severity",
        "updated_at",
    )
    list_filter = ("enabled", "scope", "rule_type", "severity")
    search_fields = ("code", "field_name", "message_template")
    actions = ["enable_rules", "disable_rules"]

    @admin.action(description="Enable selected rules")
    def enable_rules(self, request, queryset):
        updated = queryset.update(enabled=True)
        self.message_user(request, f"Enabled {updated} rule(s).")

    @admin.action(description="Disable selected rules")
    def disable_rules(self, request, queryset):
        updated = queryset.update(enabled=False)
        self.message_user(request, f"Disabled {updated} rule(s).")

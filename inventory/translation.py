# inventory/translation.py

from modeltranslation.translator import register, TranslationOptions

from .models import Branch, Product

# ============================================================
# البيانات الأساسية (Master Data)
# ============================================================

@register(Product)
class ProductTranslationOptions(TranslationOptions):
    fields = ('name',)


@register(Branch)
class BranchTranslationOptions(TranslationOptions):
    fields = ('name',)

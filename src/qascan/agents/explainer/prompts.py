"""Per-category prompts for audit issue explanations.

Templates are filled with ``str.format`` using ``title``, ``description``
and, for performance items, ``savings``.
"""

SYSTEM_PROMPT = (
    "You are a senior QA engineer providing actionable, empathetic explanations "
    "to a web development team. Keep responses concise and practical."
)

ACCESSIBILITY_PROMPT = """\
An automated accessibility audit flagged the following issue on a web page.

Issue: {title}
Audit description: {description}

In a short paragraph, explain who is affected by this issue and how it \
impacts their experience. Then list the concrete steps a developer should \
take to fix it, with a brief code example if it helps.
"""

PERFORMANCE_PROMPT = """\
An automated performance audit flagged the following item on a web page. \
Fixing it could save {savings}.

Item: {title}
Audit description: {description}

In a short paragraph, explain what this item means for page load speed and \
user experience. Then list the most effective fixes in order of impact.
"""

SEO_PROMPT = """\
An automated SEO audit reported the following failing check on a web page.

Check: {title}
Audit description: {description}

Briefly explain how this affects search visibility or how the page appears \
in search results, and give the concrete change needed to pass the check.
"""

BEST_PRACTICES_PROMPT = """\
An automated best-practices audit reported the following failing check on a \
web page.

Check: {title}
Audit description: {description}

Briefly explain the risk this poses (security, reliability or user trust) \
and give the concrete change needed to resolve it.
"""

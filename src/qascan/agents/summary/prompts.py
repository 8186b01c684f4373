"""Prompts for the final report summary."""

SYSTEM_PROMPT = (
    "You are a senior QA engineer summarizing website quality findings in a "
    "concise, client-ready tone."
)

USER_PROMPT = """\
Write a summary of the automated quality scan of {url}.

The condensed scan data below may be incomplete: some checks can be missing \
or may have failed. Only describe what the data shows and mention briefly \
when a check could not be completed.

## Scan data
{report_json}

## Output
- Open with one or two sentences on the overall state of the site.
- Follow with the three to five most important findings, most urgent first.
- Close with a recommended next step.
Use plain prose and short bullet points. Do not invent scores or issues.
"""

"""
Prompt templates for classification, generation and quality fix passes.
"""

from typing import Dict, List, Optional


CLASSIFY_SYSTEM = """You are a code complexity classifier for an AI build assistant. Your job is to analyze user requests and determine how complex they are to implement.

You must respond with ONLY valid JSON, no markdown formatting, no code blocks, no explanation outside the JSON."""


def build_classification_prompt(user_prompt: str) -> str:
    return f"""Analyze this request and classify its complexity:

"{user_prompt}"

Respond with this exact JSON structure:
{{
  "isQuestion": boolean,
  "estimatedFiles": number,
  "domains": string[],
  "complexityScore": number,
  "needsResearch": boolean,
  "needsPlanning": boolean,
  "reasoning": string
}}

Field definitions:
- isQuestion: true ONLY if asking for explanation/information, NOT requesting code changes
- estimatedFiles: number of files to create/modify (1-2=simple, 3-5=moderate, 6-15=complex, 16+=mega)
- domains: array from ["frontend", "backend", "database", "auth", "api", "styling", "testing", "infrastructure"]
- complexityScore: 1-3=simple, 4-9=moderate, 10-15=complex, 16+=mega-complex
- needsResearch: true only if requires competitor analysis, market research, or studying external systems
- needsPlanning: true if complex enough to benefit from a step-by-step plan before execution
- reasoning: brief 1-sentence explanation of your classification

Consider implicit complexity:
- "validation" = validation logic + error handling + error display + types
- "persists/saves/remembers" = storage layer
- "authentication/login" = auth flow + protected routes + session + multiple pages
- "dark mode" = theme context + toggle UI + CSS variables + persistence
- "with X and Y and Z" = multiple features compound complexity
- "full/complete/entire/comprehensive" = thorough implementation"""


BUILD_SYSTEM = """You are an expert software engineer working inside a project sandbox. You turn requests into complete, working code.

<artifact_format>
Wrap ALL file operations and commands in artifact tags. Output the tags directly, never inside markdown code fences.

<artifact id="unique-kebab-id" title="Brief Description">
  <action type="shell">
npm install package-name
  </action>
  <action type="file" filePath="path/to/file.ts">
// COMPLETE file contents here
  </action>
</artifact>

Rules:
1. ALWAYS provide COMPLETE file contents, never truncate or use placeholders
2. File paths are relative to the project root and use forward slashes
3. Install dependencies before the files that import them
4. Directories are created implicitly
5. Related files belong in one artifact; actions run in the order written
6. Every type="file" action MUST carry a filePath attribute
</artifact_format>

<quality>
Your output is checked by lint, typecheck, test, security and accessibility gates:
- no eval(), new Function(), dangerouslySetInnerHTML or hardcoded secrets
- no explicit `any`, no @ts-ignore
- lines of at most 120 characters, files end with a newline
- images carry alt text, interactive elements are buttons or have a role
</quality>

<output_rules>
- Be concise: one or two sentences before the artifact, none after
- For pure questions, answer in prose and emit no artifact
</output_rules>"""


QUESTION_SYSTEM = """You are an expert software engineer. Answer the user's question clearly and concisely.
Do not generate artifacts or file changes unless explicitly asked."""


def system_prompt_for_mode(mode: str) -> str:
    return QUESTION_SYSTEM if mode == "question" else BUILD_SYSTEM


def build_generation_prompt(prompt: str, files: Optional[Dict[str, str]] = None,
                            max_file_chars: int = 6000) -> str:
    """Wrap the user request with the current project files it may edit."""
    if not files:
        return prompt
    parts = ["<project_files>"]
    for path in sorted(files):
        content = files[path]
        if len(content) > max_file_chars:
            content = content[:max_file_chars] + "\n... (truncated)"
        parts.append(f'<file path="{path}">\n{content}\n</file>')
    parts.append("</project_files>")
    parts.append("")
    parts.append(prompt)
    return "\n".join(parts)


def build_fix_prompt(prompt: str, issues: List[str]) -> str:
    """Ask for a follow-up artifact that resolves blocking gate issues."""
    listed = "\n".join(f"- {issue}" for issue in issues[:50])
    return f"""The previous changes for this request did not pass the quality gates.

Original request:
{prompt}

Blocking issues:
{listed}

Emit a single artifact with the complete corrected contents of every file that needs to change."""

"""Tests for streaming artifact extraction."""

import pytest

from pipeline.parser import (
    ArtifactParser,
    IN_ACTION,
    IN_CONTAINER,
    OUTSIDE,
    clean_content,
    extract_text,
    has_artifacts,
    parse_actions,
    parse_artifacts,
    split_text_and_actions,
    validate_artifact,
)
from pipeline.types import Action, Artifact
from conftest import artifact, file_action, shell_action


SAMPLE = (
    "I'll create the app.\n"
    + artifact(
        file_action("src/App.tsx", "export default function App() {\n  return <div>Hi</div>;\n}"),
        shell_action("npm install"),
        artifact_id="app", title="App",
    )
    + "\nDone."
)


class TestParseActions:
    """Whole-text parsing."""

    def test_two_actions_in_order(self):
        actions = parse_actions(
            '<artifact id="a" title="A"><action type="file" filePath="a.ts">x</action>'
            '<action type="shell">npm i</action></artifact>'
        )
        assert [a.kind for a in actions] == ["file", "shell"]
        assert actions[0].file_path == "a.ts"
        assert actions[0].content == "x"
        assert actions[1].file_path is None
        assert actions[1].content == "npm i"

    def test_sample(self):
        artifacts = parse_artifacts(SAMPLE)
        assert len(artifacts) == 1
        assert artifacts[0].id == "app"
        assert artifacts[0].title == "App"
        file_act, shell_act = artifacts[0].actions
        assert file_act.content.startswith("export default function App()")
        assert "<div>Hi</div>" in file_act.content
        assert shell_act.content == "npm install"

    def test_prose_outside_artifacts(self):
        text, actions = split_text_and_actions(SAMPLE)
        assert text.startswith("I'll create the app.")
        assert text.rstrip().endswith("Done.")
        assert "<action" not in text
        assert len(actions) == 2

    def test_multiple_artifacts_keep_document_order(self):
        text = artifact(file_action("a.py", "a = 1"), artifact_id="one") + "\nthen\n" + \
            artifact(file_action("b.py", "b = 2"), artifact_id="two")
        assert [a.file_path for a in parse_actions(text)] == ["a.py", "b.py"]

    def test_unclosed_artifact_is_dropped(self):
        text = '<artifact id="x" title="X"><action type="file" filePath="a.ts">x</action>'
        assert parse_actions(text) == []

    def test_action_left_open_ends_with_its_artifact(self):
        text = (
            '<artifact id="x" title="X"><action type="file" filePath="a.ts">broken</artifact>'
            ' prose '
            '<artifact id="y" title="Y"><action type="file" filePath="b.ts">ok</action></artifact>'
        )
        assert [(a.file_path, a.content) for a in parse_actions(text)] == [("b.ts", "ok")]
        assert split_text_and_actions(text)[0] == " prose "

    def test_closed_actions_survive_an_open_sibling(self):
        text = artifact(shell_action("npm install"), '<action type="file" filePath="a.ts">half')
        assert [a.content for a in parse_actions(text)] == ["npm install"]

    @pytest.mark.parametrize("size", [1, 3, 8])
    def test_action_left_open_across_chunks(self, size):
        text = (
            '<artifact id="x" title="X"><action type="file" filePath="a.ts">broken</artifact>'
            '<artifact id="y" title="Y"><action type="file" filePath="b.ts">ok</action></artifact>'
        )
        parser = ArtifactParser()
        for i in range(0, len(text), size):
            parser.feed(text[i:i + size])
        parser.finalize()
        assert [(a.file_path, a.content) for a in parser.actions] == [("b.ts", "ok")]

    def test_unknown_action_type_skipped(self):
        text = artifact('<action type="deploy">now</action>', file_action("a.ts", "x"))
        actions = parse_actions(text)
        assert [a.file_path for a in actions] == ["a.ts"]

    def test_file_action_without_path_skipped(self):
        text = artifact('<action type="file">orphan</action>', shell_action("ls"))
        assert [a.kind for a in parse_actions(text)] == ["shell"]

    def test_shell_action_ignores_file_path(self):
        text = artifact('<action type="shell" filePath="x.sh">ls</action>')
        assert parse_actions(text)[0].file_path is None

    def test_single_quoted_and_reordered_attributes(self):
        text = "<artifact title='T' id='i'><action filePath='p.ts' type='file'>c</action></artifact>"
        art = parse_artifacts(text)[0]
        assert art.id == "i"
        assert art.actions[0].file_path == "p.ts"

    def test_attribute_containing_gt(self):
        text = '<artifact id="a" title="x > y"><action type="shell">echo</action></artifact>'
        art = parse_artifacts(text)[0]
        assert art.title == "x > y"
        assert art.actions[0].content == "echo"

    def test_similar_tag_name_is_text(self):
        text = "Use <artifacts> wisely."
        assert parse_actions(text) == []
        assert split_text_and_actions(text)[0] == text

    def test_no_artifacts(self):
        assert not has_artifacts("just prose")
        assert has_artifacts(SAMPLE)


class TestChunking:
    """Chunk boundaries must not change the result."""

    @pytest.mark.parametrize("size", [1, 2, 3, 7, 16, 1000])
    def test_any_chunk_size(self, size):
        parser = ArtifactParser()
        for i in range(0, len(SAMPLE), size):
            parser.feed(SAMPLE[i:i + size])
        parser.finalize()
        expected = parse_actions(SAMPLE)
        assert [(a.kind, a.file_path, a.content) for a in parser.actions] == \
               [(a.kind, a.file_path, a.content) for a in expected]
        assert parser.text == split_text_and_actions(SAMPLE)[0]

    def test_actions_released_when_artifact_closes(self):
        parser = ArtifactParser()
        first = parser.feed('<artifact id="a" title="A"><action type="shell">ls</action>')
        assert first.actions == []
        assert parser.state == IN_CONTAINER
        second = parser.feed("</artifact>")
        assert [a.content for a in second.actions] == ["ls"]
        assert parser.state == OUTSIDE

    def test_state_inside_action(self):
        parser = ArtifactParser()
        parser.feed('<artifact id="a" title="A"><action type="shell">npm')
        assert parser.state == IN_ACTION

    def test_feed_after_finalize_raises(self):
        parser = ArtifactParser()
        parser.finalize()
        with pytest.raises(RuntimeError):
            parser.feed("more")
        parser.reset()
        assert parser.feed("ok").text == "ok"

    def test_custom_tags(self):
        parser = ArtifactParser(container_tag="boltArtifact", action_tag="boltAction")
        parser.feed('<boltArtifact id="b" title="B"><boltAction type="shell">ls</boltAction></boltArtifact>')
        parser.finalize()
        assert [a.content for a in parser.actions] == ["ls"]


class TestCleanContent:

    def test_dedent_and_trim(self):
        assert clean_content("\n    a\n      b\n") == "a\n  b"

    def test_wrapping_fence_removed(self):
        assert clean_content("```ts\nconst a = 1;\n```") == "const a = 1;"

    def test_inner_fence_kept(self):
        content = "# Title\n```\ncode\n```\nmore"
        assert clean_content(content) == content


class TestExtractText:

    def test_collapses_whitespace_and_fences(self):
        text = "Intro\n\n```\n" + artifact(shell_action("ls")) + "\n```\n  Outro"
        assert extract_text(text) == "Intro Outro"


class TestValidateArtifact:

    def test_valid(self):
        art = Artifact(id="a", title="A", actions=[Action(kind="file", file_path="src/a.ts", content="x")])
        assert validate_artifact(art) == []

    def test_problems(self):
        art = Artifact(actions=[
            Action(kind="file", file_path="../etc/passwd", content="x"),
            Action(kind="file", file_path="/abs.ts", content=""),
            Action(kind="file", file_path="/abs.ts", content="y"),
        ])
        errors = validate_artifact(art)
        assert "Artifact missing id" in errors
        assert "Artifact missing title" in errors
        assert any("inside the project" in e and "../etc/passwd" in e for e in errors)
        assert any("empty content" in e for e in errors)
        assert any("more than once" in e for e in errors)

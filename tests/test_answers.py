import pytest

from homelab_setup.answers import apply_answers, load_answers


def test_answers_are_normalized(tmp_path):
    path = tmp_path / "answers.yaml"
    path.write_text(
        "\n".join(
            [
                "homelab_user: homelab",
                "container-runtime: podman",
                "selected_services: [media, web]",
                "wg_listen_port: 51821",
                "skip_me: null",
                "NFS_SERVER: 192.168.1.10",
            ]
        ),
        encoding="utf-8",
    )

    answers = load_answers(str(path))

    assert answers == {
        "HOMELAB_USER": "homelab",
        "CONTAINER_RUNTIME": "podman",
        "SELECTED_SERVICES": "media web",
        "WG_LISTEN_PORT": "51821",
        "NFS_SERVER": "192.168.1.10",
    }


def test_apply_answers(store, tmp_path):
    path = tmp_path / "answers.yml"
    path.write_text("nfs_server: nas.local\n", encoding="utf-8")

    apply_answers(store, load_answers(str(path)))

    assert store.get("NFS_SERVER") == "nas.local"


def test_answers_must_be_a_mapping(tmp_path):
    path = tmp_path / "answers.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_answers(str(path))


def test_nested_values_rejected(tmp_path):
    path = tmp_path / "answers.yaml"
    path.write_text("nfs:\n  server: nas\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_answers(str(path))


def test_answers_must_be_yaml(tmp_path):
    path = tmp_path / "answers.json"
    path.write_text("{}", encoding="utf-8")
    with pytest.raises(ValueError):
        load_answers(str(path))

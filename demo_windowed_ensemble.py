"""
Demonstração: Windowed Replacement Ensemble

Mostra o ensemble processando um stream com mudanças de conceito:
- Avaliação prequencial (cada instância é testada antes de ser usada no treino)
- Candidatos entrando no pool e disputando a vaga do membro mais fraco
- Efeito das opções de configuração
- Comparação com um modelo treinado em lote sobre o mesmo histórico
"""

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from sklearn.ensemble import RandomForestClassifier
from sklearn.metrics import accuracy_score, f1_score

from windowed_ensemble import WindowedReplacementEnsemble
from stream_evaluation import (
    simulate_data_stream,
    prequential_evaluation,
    compare_ensemble_configurations,
)


STREAM_PARAMS = {"n_chunks": 30, "chunk_size": 100, "drift_points": [10, 20]}


def _secao(titulo):
    print(f"\n{'-' * 70}\n{titulo}\n{'-' * 70}")


def demo_prequential():
    """Treinar o ensemble no stream e acompanhar o pool."""
    _secao("[1] Avaliação prequencial em um stream com drift")

    ensemble = WindowedReplacementEnsemble(
        ensemble_size=5, window_size=500, seed=42, verbose=1
    )
    history = prequential_evaluation(ensemble, simulate_data_stream(**STREAM_PARAMS))

    by_concept = history.groupby(
        pd.cut(history["chunk"], bins=[-1, 9, 19, 29], labels=["A", "B", "C"]),
        observed=True,
    )["accuracy"].mean()

    print(f"\nInstâncias consumidas: {ensemble.n_instances_seen_}")
    print(f"Peso de treino acumulado: {ensemble.weight_seen_:.0f}")
    print(f"Janelas: {ensemble.n_boundaries_} | entradas no pool: "
          f"{ensemble.n_additions_} | substituições: {ensemble.n_replacements_}")
    print("Acurácia média por conceito:")
    for concept, acc in by_concept.items():
        print(f"  conceito {concept}: {acc:.4f}")

    print("\nMembros ao final do stream:")
    print(ensemble.get_performance_summary().to_string(index=False))

    return ensemble, history


def demo_configurations():
    """Rodar as configurações padrão lado a lado."""
    _secao("[2] Opções de configuração no mesmo stream")

    results = compare_ensemble_configurations(stream_params=STREAM_PARAMS)
    columns = ["Configuration", "Accuracy", "Accuracy Std", "Replacements", "Final Size"]
    print(results[columns].sort_values("Accuracy", ascending=False)
          .to_string(index=False, float_format="{:.4f}".format))

    return results


def demo_batch_baseline():
    """Confrontar o ensemble com uma floresta treinada de uma vez."""
    _secao("[3] Ensemble incremental x floresta em lote")

    chunks = list(simulate_data_stream(**STREAM_PARAMS))
    # Os dois últimos chunks ficam de fora para teste
    X_hist = np.vstack([X for X, _ in chunks[:-2]])
    y_hist = np.concatenate([y for _, y in chunks[:-2]])
    X_new = np.vstack([X for X, _ in chunks[-2:]])
    y_new = np.concatenate([y for _, y in chunks[-2:]])

    forest = RandomForestClassifier(n_estimators=10, random_state=42)
    forest.fit(X_hist, y_hist)

    ensemble = WindowedReplacementEnsemble(ensemble_size=10, window_size=1000, seed=42)
    ensemble.partial_fit(X_hist, y_hist)

    rows = []
    for label, model in (("Floresta (lote)", forest), ("Ensemble (stream)", ensemble)):
        y_pred = model.predict(X_new)
        rows.append({
            "Modelo": label,
            "Accuracy": accuracy_score(y_new, y_pred),
            "F1 Score": f1_score(y_new, y_pred, average="weighted"),
        })

    table = pd.DataFrame(rows)
    print(table.to_string(index=False, float_format="{:.4f}".format))
    print("\nA floresta mistura os três conceitos do histórico; o ensemble "
          "troca membros conforme o conceito atual.")

    return table


def plot_results(ensemble, history, results=None, path="windowed_ensemble.png"):
    """Painel com métricas, evolução do pool e disputas de candidatos."""
    _secao("[4] Gráficos")

    fig, axes = plt.subplots(2, 2, figsize=(14, 9))
    fig.suptitle("Windowed Replacement Ensemble", fontsize=15)

    ax = axes[0, 0]
    sns.lineplot(data=history.melt(id_vars="chunk", value_vars=["accuracy", "f1_score"]),
                 x="chunk", y="value", hue="variable", ax=ax)
    ax.set_title("Métricas prequenciais por chunk")

    ax = axes[0, 1]
    ax.step(history["chunk"], history["ensemble_size"], where="post", label="membros")
    ax.step(history["chunk"], history["n_replacements"], where="post",
            label="substituições acumuladas")
    ax.set_title("Pool ao longo do stream")
    ax.legend()

    ax = axes[1, 0]
    challenges = ensemble.get_challenge_summary()
    if not challenges.empty:
        outcome = np.select(
            [challenges["added"], challenges["replaced"]],
            ["entrou", "substituiu"],
            default="descartado",
        )
        sns.scatterplot(x=challenges["weight_seen"], y=challenges["candidate_score"],
                        hue=outcome, ax=ax)
    ax.set_xlabel("peso acumulado")
    ax.set_title("Candidatos em cada janela")

    ax = axes[1, 1]
    if results is not None and not results.empty:
        sns.barplot(data=results, x="Accuracy", y="Configuration", ax=ax,
                    color="steelblue")
        ax.set_title("Acurácia média por configuração")
    else:
        members = ensemble.get_performance_summary()
        sns.barplot(data=members, x="slot", y="score", ax=ax, color="steelblue")
        ax.set_title("Score final por membro")

    fig.tight_layout()
    fig.savefig(path, dpi=150)
    print(f"Figura gravada em {path}")
    plt.show()


def main():
    """Executar as demonstrações em sequência."""
    ensemble, history = demo_prequential()
    results = demo_configurations()
    demo_batch_baseline()
    plot_results(ensemble, history, results)


if __name__ == "__main__":
    main()
